"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Defines the metric store contract shared by every backend:
- memory:     two dicts behind a lock
- file:       memory plus a JSON file on disk
- relational: two tables behind SQLAlchemy

============================================================
USAGE
============================================================
A backend is chosen once at start-up (storage.factory) and
used through this interface everywhere else.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from core.models import Metric, MetricValue


logger = logging.getLogger(__name__)


# =========================================================
# STORE STATE
# =========================================================

def _counter_value(name: Any, value: Any) -> int:
    """Accept 5 or 5.0 for a counter; reject 1.5, "5" and booleans."""
    if isinstance(value, bool):
        raise ValueError(f"counter {name!r} is not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"counter {name!r} is not an integer: {value!r}")


@dataclass
class StoreState:
    """
    The two mappings forming the durable state.

    Serialized as {"gauges": {name: float}, "counters": {name: int}}.
    """
    gauges: Dict[str, float] = field(default_factory=dict)
    counters: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {"gauges": dict(self.gauges), "counters": dict(self.counters)}

    @classmethod
    def from_dict(cls, data: Any) -> "StoreState":
        """
        Build state from the durable JSON form.

        Missing sections load as empty; gauges are coerced to float,
        counters must be integral.

        Raises:
            ValueError: If the document does not have the expected shape
        """
        if not isinstance(data, dict):
            raise ValueError("state document must be a JSON object")

        gauges = data.get("gauges") or {}
        counters = data.get("counters") or {}
        if not isinstance(gauges, dict) or not isinstance(counters, dict):
            raise ValueError("gauges and counters must be JSON objects")

        return cls(
            gauges={str(name): float(value) for name, value in gauges.items()},
            counters={str(name): _counter_value(name, value) for name, value in counters.items()},
        )

    def merged(self) -> Dict[str, MetricValue]:
        """
        Merge both kinds into one mapping keyed by name.

        Counters overwrite gauges of the same name. The clash is logged
        rather than resolved: callers needing both use the separate maps.
        """
        merged: Dict[str, MetricValue] = dict(self.gauges)
        for name, value in self.counters.items():
            if name in merged:
                logger.warning(
                    f"Metric name '{name}' exists as both gauge and counter; "
                    f"merged view shows the counter"
                )
            merged[name] = value
        return merged


# =========================================================
# REPOSITORY CONTRACT
# =========================================================

class MetricRepository(ABC):
    """
    Abstract base class for all metric stores.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    - Gauges overwrite, counters accumulate
    - Batch updates are applied together
    - Reads never observe a torn write
    - Misses raise MetricNotFoundError

    ============================================================
    """

    backend_name: str = "abstract"

    # ---------------------------------------------------------
    # Writes
    # ---------------------------------------------------------

    @abstractmethod
    def update_gauge(self, name: str, value: float) -> None:
        """Replace the stored gauge value."""

    @abstractmethod
    def update_counter(self, name: str, delta: int) -> None:
        """Add delta to the stored counter, starting at 0."""

    @abstractmethod
    def update_batch(self, metrics: Iterable[Metric]) -> None:
        """
        Apply every metric of the batch.

        Raises:
            MetricValidationError: If an entry is not a Gauge/Counter
            StorageError: If the backend rejects the batch
        """

    # ---------------------------------------------------------
    # Reads
    # ---------------------------------------------------------

    @abstractmethod
    def get_gauge(self, name: str) -> float:
        """
        Get a gauge value.

        Raises:
            MetricNotFoundError: If no gauge has this name
        """

    @abstractmethod
    def get_counter(self, name: str) -> int:
        """
        Get a counter total.

        Raises:
            MetricNotFoundError: If no counter has this name
        """

    @abstractmethod
    def get_state(self) -> StoreState:
        """Get a consistent copy of both mappings."""

    def get_all(self) -> Dict[str, MetricValue]:
        """Get gauges and counters merged into one mapping."""
        return self.get_state().merged()

    # ---------------------------------------------------------
    # Durability and lifecycle
    # ---------------------------------------------------------

    @abstractmethod
    def save_snapshot(self, dest: Optional[str]) -> None:
        """Write the durable JSON form to dest."""

    @abstractmethod
    def load_snapshot(self, src: Optional[str]) -> None:
        """Replace state from src; a missing file is not an error."""

    def ping(self) -> None:
        """Liveness check; raises if the backend cannot be reached."""

    def close(self) -> None:
        """Release resources, flushing pending state first."""

    def __enter__(self) -> "MetricRepository":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
