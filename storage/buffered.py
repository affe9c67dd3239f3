"""
Storage - Buffered Flush Wrapper.

============================================================
PURPOSE
============================================================
Decorates a FileRepository so that writes stay fast while the
file on disk follows the in-memory state:

- every write reaches the inner store immediately
- the whole state is written to disk when
  * the pending-change count reaches the threshold, or
  * the background timer fires and changes are pending
- shutdown() always performs a final synchronous flush

============================================================
STATE MACHINE
============================================================
    IDLE --write--> PENDING --trigger--> FLUSHING --done--> IDLE
                       ^                     |
                       +------failure--------+
    any --shutdown()--> CLOSED

The state and the pending counter share one lock. Only the
thread that moves PENDING -> FLUSHING writes the file.

============================================================
"""

import logging
import threading
from enum import Enum
from typing import Iterable, List, Optional

from core.exceptions import StorageError
from core.models import Metric
from storage.repositories.base import MetricRepository, StoreState
from storage.repositories.file import FileRepository


logger = logging.getLogger(__name__)

DEFAULT_FLUSH_THRESHOLD = 10
DEFAULT_FLUSH_INTERVAL = 5.0


class FlushState(str, Enum):
    """Lifecycle of pending changes."""
    IDLE = "idle"
    PENDING = "pending"
    FLUSHING = "flushing"
    CLOSED = "closed"


class BufferedFlushRepository(MetricRepository):
    """
    Write-through store with size- or time-triggered file flushes.

    ============================================================
    USAGE
    ============================================================
    repo = BufferedFlushRepository(FileRepository("/tmp/metrics.json"))
    repo.start()
    ...
    repo.shutdown()  # final flush, mandatory before exit

    ============================================================
    """

    backend_name = "buffered-file"

    def __init__(
        self,
        inner: FileRepository,
        flush_threshold: int = DEFAULT_FLUSH_THRESHOLD,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
    ) -> None:
        """
        Initialize the wrapper.

        Args:
            inner: File-backed store receiving every write
            flush_threshold: Pending changes that force a flush
            flush_interval: Seconds between timer-driven flushes
        """
        if flush_threshold < 1:
            raise ValueError("flush_threshold must be at least 1")
        if flush_interval <= 0:
            raise ValueError("flush_interval must be positive")

        self._inner = inner
        self._threshold = flush_threshold
        self._interval = flush_interval

        self._lock = threading.Lock()
        self._state = FlushState.IDLE
        self._pending = 0
        self._flush_count = 0

        self._stop_event = threading.Event()
        self._timer: Optional[threading.Thread] = None

    # =========================================================
    # PROPERTIES
    # =========================================================

    @property
    def inner(self) -> FileRepository:
        return self._inner

    @property
    def state(self) -> FlushState:
        with self._lock:
            return self._state

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    @property
    def flush_count(self) -> int:
        with self._lock:
            return self._flush_count

    # =========================================================
    # LIFECYCLE
    # =========================================================

    def start(self) -> None:
        """Start the background flush timer."""
        with self._lock:
            if self._state is FlushState.CLOSED:
                raise StorageError(
                    "Cannot start a closed repository",
                    backend=self.backend_name,
                    operation="start",
                )
            if self._timer is not None:
                return
            self._timer = threading.Thread(
                target=self._timer_loop,
                name="metrics-flush-timer",
                daemon=True,
            )
        self._timer.start()
        logger.info(
            f"Buffered flush started: threshold={self._threshold}, "
            f"interval={self._interval:g}s, path={self._inner.path}"
        )

    def shutdown(self) -> None:
        """
        Stop the timer and write the final state to disk.

        Raises:
            StorageError: If the final flush fails
        """
        self._stop_event.set()
        timer = self._timer
        if timer is not None and timer is not threading.current_thread():
            timer.join()

        with self._lock:
            if self._state is FlushState.CLOSED:
                return
            self._state = FlushState.CLOSED
            self._pending = 0

        self._inner.flush()
        logger.info(f"Final flush to {self._inner.path} complete")

    def close(self) -> None:
        self.shutdown()

    def _timer_loop(self) -> None:
        while not self._stop_event.wait(self._interval):
            self.flush_if_pending()

    # =========================================================
    # FLUSHING
    # =========================================================

    def _record_changes(self, count: int) -> bool:
        """Count pending changes; return True if the threshold is reached."""
        with self._lock:
            if self._state is FlushState.CLOSED:
                return False
            self._pending += count
            if self._state is FlushState.IDLE:
                self._state = FlushState.PENDING
            return self._pending >= self._threshold

    def _begin_flush(self) -> bool:
        with self._lock:
            if self._state is not FlushState.PENDING:
                return False
            self._state = FlushState.FLUSHING
            self._pending = 0
            return True

    def _end_flush(self, succeeded: bool) -> None:
        with self._lock:
            if self._state is FlushState.CLOSED:
                return
            if succeeded:
                self._flush_count += 1
            # Writes that arrived during the flush keep the state pending
            if succeeded and self._pending == 0:
                self._state = FlushState.IDLE
            else:
                self._state = FlushState.PENDING

    def flush_if_pending(self) -> bool:
        """
        Write the full state to disk if changes are pending.

        Failures are logged and leave the changes pending for the
        next trigger.

        Returns:
            True if this call wrote the file
        """
        if not self._begin_flush():
            return False

        try:
            self._inner.flush()
        except StorageError as e:
            logger.error(f"Buffered flush failed, will retry on next trigger: {e}")
            self._end_flush(succeeded=False)
            return False

        self._end_flush(succeeded=True)
        logger.debug(f"Flushed metrics to {self._inner.path}")
        return True

    def _after_write(self, count: int) -> None:
        if self._record_changes(count):
            self.flush_if_pending()

    # =========================================================
    # METRIC REPOSITORY
    # =========================================================

    def update_gauge(self, name: str, value: float) -> None:
        self._inner.update_gauge(name, value)
        self._after_write(1)

    def update_counter(self, name: str, delta: int) -> None:
        self._inner.update_counter(name, delta)
        self._after_write(1)

    def update_batch(self, metrics: Iterable[Metric]) -> None:
        batch: List[Metric] = list(metrics)
        self._inner.update_batch(batch)
        if batch:
            self._after_write(len(batch))

    def get_gauge(self, name: str) -> float:
        return self._inner.get_gauge(name)

    def get_counter(self, name: str) -> int:
        return self._inner.get_counter(name)

    def get_state(self) -> StoreState:
        return self._inner.get_state()

    def save_snapshot(self, dest: Optional[str]) -> None:
        self._inner.save_snapshot(dest)

    def load_snapshot(self, src: Optional[str]) -> None:
        self._inner.load_snapshot(src)

    def ping(self) -> None:
        self._inner.ping()
