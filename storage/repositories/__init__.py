"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The metric store contract and its three backends. All reads
and writes of metric state go through these classes.

============================================================
BACKENDS
============================================================
- MemoryRepository: dicts behind a lock
- FileRepository: memory plus a JSON file
- RelationalRepository: gauges/counters tables via SQLAlchemy

============================================================
"""

from storage.repositories.base import MetricRepository, StoreState
from storage.repositories.file import FileRepository
from storage.repositories.memory import MemoryRepository
from storage.repositories.relational import RelationalRepository


__all__ = [
    "MetricRepository",
    "StoreState",
    "MemoryRepository",
    "FileRepository",
    "RelationalRepository",
]
