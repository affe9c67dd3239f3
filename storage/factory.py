"""
Storage - Backend Factory.

============================================================
PURPOSE
============================================================
Chooses the metric store once, at start-up:

1. database DSN set   -> RelationalRepository
2. file path set      -> FileRepository
   - store_interval 0 -> synchronous save on every write
   - otherwise        -> BufferedFlushRepository (started)
3. neither            -> MemoryRepository

============================================================
"""

import logging
from dataclasses import dataclass
from typing import Optional

from core.retry import RetryPolicy
from storage.buffered import (
    DEFAULT_FLUSH_THRESHOLD,
    BufferedFlushRepository,
)
from storage.database import DatabaseConfig, create_database_engine
from storage.repositories.base import MetricRepository
from storage.repositories.file import FileRepository
from storage.repositories.memory import MemoryRepository
from storage.repositories.relational import RelationalRepository


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """Settings that select and tune the metric store."""
    database_dsn: str = ""
    file_storage_path: str = ""
    store_interval: float = 5.0
    restore: bool = True
    flush_threshold: int = DEFAULT_FLUSH_THRESHOLD


def create_repository(
    config: StorageConfig,
    retry_policy: Optional[RetryPolicy] = None,
) -> MetricRepository:
    """
    Build the configured metric store.

    Args:
        config: Storage settings
        retry_policy: Policy for the relational backend

    Returns:
        A ready-to-use repository

    Raises:
        StorageInitializationError: If the database cannot be initialized
        StorageError: If restoring the file fails
    """
    if config.database_dsn:
        engine = create_database_engine(DatabaseConfig(dsn=config.database_dsn))
        try:
            repository: MetricRepository = RelationalRepository(engine, retry_policy=retry_policy)
        except Exception:
            engine.dispose()
            raise
        logger.info("Using relational metric store")
        return repository

    if config.file_storage_path:
        sync_writes = config.store_interval <= 0
        file_repository = FileRepository(config.file_storage_path, sync_writes=sync_writes)

        if config.restore:
            file_repository.restore()

        if sync_writes:
            logger.info(f"Using file metric store with synchronous saves: {config.file_storage_path}")
            return file_repository

        buffered = BufferedFlushRepository(
            file_repository,
            flush_threshold=config.flush_threshold,
            flush_interval=config.store_interval,
        )
        buffered.start()
        logger.info(f"Using buffered file metric store: {config.file_storage_path}")
        return buffered

    logger.info("Using in-memory metric store, nothing will be persisted")
    return MemoryRepository()
