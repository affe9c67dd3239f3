"""
Storage Package.

This package owns all metric state on the server.

Modules:
- repositories/: Store contract and backends
- buffered: Threshold/timer flushing wrapper for the file backend
- database: Engine creation and liveness check
- models/: ORM tables for the relational backend
- factory: Backend selection at start-up
"""

from storage.buffered import BufferedFlushRepository, FlushState
from storage.database import DatabaseConfig, create_database_engine, ping_engine
from storage.factory import StorageConfig, create_repository
from storage.repositories import (
    FileRepository,
    MemoryRepository,
    MetricRepository,
    RelationalRepository,
    StoreState,
)


__all__ = [
    "BufferedFlushRepository",
    "FlushState",
    "DatabaseConfig",
    "create_database_engine",
    "ping_engine",
    "StorageConfig",
    "create_repository",
    "FileRepository",
    "MemoryRepository",
    "MetricRepository",
    "RelationalRepository",
    "StoreState",
]
