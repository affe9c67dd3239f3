"""
Agent - Runtime Metrics Collector.

============================================================
PURPOSE
============================================================
Keeps the latest sample of process and host metrics.

- refresh(): called by the poll loop, takes a new sample
- snapshot(): called by the report loop, immutable copy

Both hold the same lock, so a report never sees a half
refreshed sample and two refreshes never interleave.

============================================================
METRICS
============================================================
Counter: PollCount
Gauges:  RandomValue, process memory/CPU/threads, gc stats,
         TotalMemory, FreeMemory, CPUutilization{N}

============================================================
"""

import gc
import logging
import os
import random
import threading
from typing import Callable, Dict

import psutil

from core.models import MetricValue, Snapshot, freeze_snapshot


logger = logging.getLogger(__name__)

POLL_COUNT = "PollCount"
RANDOM_VALUE = "RandomValue"


class RuntimeMetricsCollector:
    """
    Samples runtime metrics of the current process.

    ============================================================
    USAGE
    ============================================================
    collector = RuntimeMetricsCollector()
    collector.refresh()
    snapshot = collector.snapshot()

    ============================================================
    """

    def __init__(self, random_source: Callable[[], float] = random.random) -> None:
        self._random = random_source
        self._lock = threading.Lock()
        self._process = psutil.Process(os.getpid())

        self._poll_count = 0
        self._values: Dict[str, MetricValue] = {}

    @property
    def poll_count(self) -> int:
        with self._lock:
            return self._poll_count

    # =========================================================
    # POLL SIDE
    # =========================================================

    def refresh(self) -> None:
        """Take a new sample; a concurrent call waits for this one."""
        with self._lock:
            self._poll_count += 1

            values: Dict[str, MetricValue] = {
                RANDOM_VALUE: float(self._random()),
            }
            values.update(self._sample_process())
            values.update(self._sample_gc())
            values.update(self._sample_host())

            self._values = values

    def _sample_process(self) -> Dict[str, float]:
        values: Dict[str, float] = {}
        try:
            with self._process.oneshot():
                memory = self._process.memory_info()
                cpu_times = self._process.cpu_times()
                values["Alloc"] = float(memory.rss)
                values["Sys"] = float(memory.vms)
                values["NumThreads"] = float(self._process.num_threads())
                values["CPUUser"] = float(cpu_times.user)
                values["CPUSystem"] = float(cpu_times.system)
        except psutil.Error as e:
            logger.debug(f"Process sampling failed: {e}")
            return values

        # num_fds only exists on POSIX
        if hasattr(self._process, "num_fds"):
            try:
                values["OpenFiles"] = float(self._process.num_fds())
            except psutil.Error as e:
                logger.debug(f"Open file sampling failed: {e}")

        return values

    @staticmethod
    def _sample_gc() -> Dict[str, float]:
        stats = gc.get_stats()
        return {
            "NumGC": float(sum(gen["collections"] for gen in stats)),
            "GCCollected": float(sum(gen["collected"] for gen in stats)),
            "GCUncollectable": float(sum(gen["uncollectable"] for gen in stats)),
            "GCTracked": float(sum(gc.get_count())),
        }

    @staticmethod
    def _sample_host() -> Dict[str, float]:
        values: Dict[str, float] = {}

        try:
            memory = psutil.virtual_memory()
            values["TotalMemory"] = float(memory.total)
            values["FreeMemory"] = float(memory.free)
        except (psutil.Error, OSError) as e:
            logger.debug(f"Memory sampling failed: {e}")

        try:
            percents = psutil.cpu_percent(interval=None, percpu=True)
            for index, percent in enumerate(percents, start=1):
                values[f"CPUutilization{index}"] = float(percent)
        except (psutil.Error, OSError) as e:
            logger.debug(f"CPU sampling failed: {e}")

        return values

    # =========================================================
    # REPORT SIDE
    # =========================================================

    def snapshot(self) -> Snapshot:
        """Immutable copy of the latest sample; PollCount is the only int."""
        with self._lock:
            values: Dict[str, MetricValue] = dict(self._values)
            values[POLL_COUNT] = self._poll_count
        return freeze_snapshot(values)
