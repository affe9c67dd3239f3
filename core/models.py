"""
Core Module - Metric Data Model.

============================================================
RESPONSIBILITY
============================================================
Defines the two metric kinds and their wire representation.

- Gauge: last-write-wins float value
- Counter: accumulated integer delta
- Wire form: {"id", "type", "value"?, "delta"?}

============================================================
DESIGN PRINCIPLES
============================================================
- Closed set of variants, dispatched with isinstance
- Wire strings are parsed exactly once, at the boundary
- Immutable metric values and snapshots

============================================================
"""

import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Union

from core.exceptions import MetricValidationError


# ============================================================
# METRIC KINDS
# ============================================================

class MetricKind(str, Enum):
    """Metric kinds accepted on the wire."""
    GAUGE = "gauge"
    COUNTER = "counter"

    @classmethod
    def parse(cls, raw: Any) -> "MetricKind":
        """Parse a wire type string."""
        try:
            return cls(raw)
        except ValueError:
            raise MetricValidationError(
                f"Invalid metric type: {raw!r}",
                field="type",
                actual=raw,
            ) from None


@dataclass(frozen=True)
class Gauge:
    """A metric whose stored value is replaced on every update."""
    name: str
    value: float

    @property
    def kind(self) -> MetricKind:
        return MetricKind.GAUGE


@dataclass(frozen=True)
class Counter:
    """A metric whose stored value is the running sum of all deltas."""
    name: str
    delta: int

    @property
    def kind(self) -> MetricKind:
        return MetricKind.COUNTER


Metric = Union[Gauge, Counter]

MetricValue = Union[float, int]

Snapshot = Mapping[str, MetricValue]


# ============================================================
# VALIDATION
# ============================================================

def _validate_name(raw: Any) -> str:
    if not isinstance(raw, str) or not raw:
        raise MetricValidationError("Metric name is required", field="id", actual=raw)
    return raw


def _validate_float(raw: Any, field: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise MetricValidationError(
            f"{field} must be a number",
            field=field,
            actual=raw,
        )
    value = float(raw)
    if math.isnan(value) or math.isinf(value):
        raise MetricValidationError(f"{field} must be finite", field=field, actual=raw)
    return value


def _validate_int(raw: Any, field: str) -> int:
    if isinstance(raw, bool):
        raise MetricValidationError(f"{field} must be an integer", field=field, actual=raw)
    if isinstance(raw, int):
        return raw
    # JSON decoders may hand back 2.0 for 2
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    raise MetricValidationError(f"{field} must be an integer", field=field, actual=raw)


def validate_metric(metric: Any) -> Metric:
    """
    Check that an object is one of the metric variants with sane fields.

    Raises:
        MetricValidationError: On unknown type or malformed fields
    """
    if isinstance(metric, Gauge):
        _validate_name(metric.name)
        _validate_float(metric.value, "value")
    elif isinstance(metric, Counter):
        _validate_name(metric.name)
        _validate_int(metric.delta, "delta")
    else:
        raise MetricValidationError(
            f"Unsupported metric object: {type(metric).__name__}",
            field="type",
        )
    return metric


# ============================================================
# WIRE CONVERSION
# ============================================================

def metric_to_wire(metric: Metric) -> Dict[str, Any]:
    """Convert a metric to its JSON object form."""
    if isinstance(metric, Gauge):
        return {"id": metric.name, "type": MetricKind.GAUGE.value, "value": metric.value}
    if isinstance(metric, Counter):
        return {"id": metric.name, "type": MetricKind.COUNTER.value, "delta": metric.delta}
    raise TypeError(f"Unsupported metric object: {type(metric).__name__}")


def metric_from_wire(obj: Any) -> Metric:
    """
    Parse one JSON object into a metric.

    Args:
        obj: Decoded JSON object {"id", "type", "value"?, "delta"?}

    Returns:
        Gauge or Counter

    Raises:
        MetricValidationError: On any malformed field
    """
    if not isinstance(obj, Mapping):
        raise MetricValidationError("Metric must be a JSON object", actual=obj)

    name = _validate_name(obj.get("id"))
    kind = MetricKind.parse(obj.get("type"))

    if kind is MetricKind.GAUGE:
        if obj.get("value") is None:
            raise MetricValidationError("Value is required for gauge", field="value")
        return Gauge(name=name, value=_validate_float(obj["value"], "value"))

    if obj.get("delta") is None:
        raise MetricValidationError("Delta is required for counter", field="delta")
    return Counter(name=name, delta=_validate_int(obj["delta"], "delta"))


def batch_from_wire(obj: Any) -> List[Metric]:
    """
    Parse a JSON array into a batch.

    Every entry is validated before the batch is returned, so a store
    never receives a partially decoded batch.
    """
    if not isinstance(obj, list):
        raise MetricValidationError("Batch must be a JSON array", actual=type(obj).__name__)
    if not obj:
        raise MetricValidationError("Empty metrics batch")
    return [metric_from_wire(item) for item in obj]


def parse_value(kind: MetricKind, raw: str) -> Metric:
    """Parse the URL form of a value; returns a nameless metric template."""
    if kind is MetricKind.GAUGE:
        try:
            return Gauge(name="", value=_validate_float(float(raw), "value"))
        except ValueError:
            raise MetricValidationError("Invalid gauge value", field="value", actual=raw) from None
    try:
        return Counter(name="", delta=int(raw))
    except ValueError:
        raise MetricValidationError("Invalid counter value", field="delta", actual=raw) from None


def make_metric(kind: MetricKind, name: str, value: Any) -> Metric:
    """Build a metric of the given kind, checking the value type."""
    if kind is MetricKind.GAUGE:
        if isinstance(value, bool) or not isinstance(value, float):
            raise MetricValidationError(
                f"invalid value type for gauge metric, expected float, got {type(value).__name__}",
                field="value",
            )
        return validate_metric(Gauge(name=name, value=value))
    if isinstance(value, bool) or not isinstance(value, int):
        raise MetricValidationError(
            f"invalid value type for counter metric, expected int, got {type(value).__name__}",
            field="delta",
        )
    return validate_metric(Counter(name=name, delta=value))


# ============================================================
# SNAPSHOTS
# ============================================================

def freeze_snapshot(values: Mapping[str, MetricValue]) -> Snapshot:
    """Return an immutable copy of collected values."""
    return MappingProxyType(dict(values))


def snapshot_to_batch(snapshot: Snapshot) -> List[Metric]:
    """
    Convert a snapshot into a batch.

    int values become counters, float values become gauges;
    anything else (bool included) is skipped.
    """
    batch: List[Metric] = []
    for name, value in snapshot.items():
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            batch.append(Counter(name=name, delta=value))
        elif isinstance(value, float):
            batch.append(Gauge(name=name, value=value))
    return batch


def batch_to_wire(metrics: Iterable[Metric]) -> List[Dict[str, Any]]:
    """Convert a batch to its JSON array form."""
    return [metric_to_wire(metric) for metric in metrics]
