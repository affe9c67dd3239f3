"""
Memory Repository.

============================================================
PURPOSE
============================================================
In-process metric store: two dicts guarded by one lock.

============================================================
THREAD SAFETY
============================================================
Every read and write holds the lock for its whole duration,
so get_state() always sees a consistent pair of mappings and
a batch is visible either entirely or not at all.

Snapshot writes go to a temp file that replaces the target
in one rename, serialized by a second lock.

============================================================
"""

import json
import logging
import os
import tempfile
import threading
from typing import Iterable, List, Optional

from core.exceptions import MetricNotFoundError, StorageError
from core.models import Counter, Gauge, Metric, MetricKind, validate_metric
from storage.repositories.base import MetricRepository, StoreState


class MemoryRepository(MetricRepository):
    """
    Metric store kept in memory.

    ============================================================
    USAGE
    ============================================================
    repo = MemoryRepository()
    repo.update_counter("hits", 5)
    repo.update_counter("hits", 3)
    repo.get_counter("hits")  # 8

    ============================================================
    """

    backend_name = "memory"

    def __init__(self) -> None:
        self._gauges: dict = {}
        self._counters: dict = {}
        self._lock = threading.Lock()
        self._file_lock = threading.Lock()
        self._logger = logging.getLogger(f"repository.{self.backend_name}")

    # =========================================================
    # WRITES
    # =========================================================

    def update_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def update_counter(self, name: str, delta: int) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + int(delta)

    def update_batch(self, metrics: Iterable[Metric]) -> None:
        # Validate everything before the first write
        batch: List[Metric] = [validate_metric(metric) for metric in metrics]

        with self._lock:
            for metric in batch:
                if isinstance(metric, Gauge):
                    self._gauges[metric.name] = float(metric.value)
                elif isinstance(metric, Counter):
                    self._counters[metric.name] = self._counters.get(metric.name, 0) + int(metric.delta)

    # =========================================================
    # READS
    # =========================================================

    def get_gauge(self, name: str) -> float:
        with self._lock:
            if name in self._gauges:
                return self._gauges[name]
        raise MetricNotFoundError(MetricKind.GAUGE.value, name)

    def get_counter(self, name: str) -> int:
        with self._lock:
            if name in self._counters:
                return self._counters[name]
        raise MetricNotFoundError(MetricKind.COUNTER.value, name)

    def get_state(self) -> StoreState:
        with self._lock:
            return StoreState(gauges=dict(self._gauges), counters=dict(self._counters))

    # =========================================================
    # SNAPSHOTS
    # =========================================================

    def save_snapshot(self, dest: Optional[str]) -> None:
        """
        Write state as pretty-printed JSON.

        Args:
            dest: Target path; empty or None does nothing

        Raises:
            StorageError: If the file cannot be written
        """
        if not dest:
            return

        with self._file_lock:
            state = self.get_state()
            directory = os.path.dirname(os.path.abspath(dest))
            tmp_path = None
            try:
                os.makedirs(directory, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(prefix=".metrics-", suffix=".tmp", dir=directory)
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(state.to_dict(), handle, indent=2)
                    handle.write("\n")
                os.replace(tmp_path, dest)
                tmp_path = None
            except OSError as e:
                raise StorageError(
                    f"Failed to save metrics to {dest}: {e}",
                    backend=self.backend_name,
                    operation="save_snapshot",
                    cause=e,
                ) from e
            finally:
                if tmp_path is not None and os.path.exists(tmp_path):
                    os.unlink(tmp_path)

        self._logger.debug(
            f"Saved {len(state.gauges)} gauges and {len(state.counters)} counters to {dest}"
        )

    def load_snapshot(self, src: Optional[str]) -> None:
        """
        Replace state from a JSON file.

        Args:
            src: Source path; empty, None or missing file does nothing

        Raises:
            StorageError: If the file exists but cannot be read or parsed
        """
        if not src:
            return

        try:
            with open(src, "r", encoding="utf-8") as handle:
                state = StoreState.from_dict(json.load(handle))
        except FileNotFoundError:
            self._logger.info(f"No metrics file at {src}, starting empty")
            return
        except (OSError, ValueError, TypeError) as e:
            raise StorageError(
                f"Failed to load metrics from {src}: {e}",
                backend=self.backend_name,
                operation="load_snapshot",
                cause=e,
            ) from e

        with self._lock:
            self._gauges = state.gauges
            self._counters = state.counters

        self._logger.info(
            f"Loaded {len(state.gauges)} gauges and {len(state.counters)} counters from {src}"
        )
