"""
File Repository.

============================================================
PURPOSE
============================================================
Memory store bound to a JSON file on disk.

- restore(): load the file at start-up
- flush():   write the whole state to the file
- sync_writes: flush after every update (store interval 0)

Periodic and threshold flushing live in
storage.buffered.BufferedFlushRepository.

============================================================
"""

from typing import Iterable

from core.models import Metric
from storage.repositories.memory import MemoryRepository


class FileRepository(MemoryRepository):
    """Memory store persisted to a file."""

    backend_name = "file"

    def __init__(self, path: str, sync_writes: bool = False) -> None:
        """
        Initialize the repository.

        Args:
            path: JSON file holding the durable state
            sync_writes: Save synchronously after every write
        """
        super().__init__()
        self._path = path
        self._sync_writes = sync_writes

    @property
    def path(self) -> str:
        return self._path

    @property
    def sync_writes(self) -> bool:
        return self._sync_writes

    def restore(self) -> None:
        """Load state from the owned file, if it exists."""
        self.load_snapshot(self._path)

    def flush(self) -> None:
        """Write the complete current state to the owned file."""
        self.save_snapshot(self._path)

    def update_gauge(self, name: str, value: float) -> None:
        super().update_gauge(name, value)
        self._after_write()

    def update_counter(self, name: str, delta: int) -> None:
        super().update_counter(name, delta)
        self._after_write()

    def update_batch(self, metrics: Iterable[Metric]) -> None:
        super().update_batch(metrics)
        self._after_write()

    def close(self) -> None:
        self.flush()
        self._logger.info(f"Metrics saved to {self._path} on close")

    def _after_write(self) -> None:
        if self._sync_writes:
            self.flush()
