"""
Storage Models Package.

ORM models for the relational metric store.

- GaugeRecord  -> gauges(name PK, value DOUBLE PRECISION)
- CounterRecord -> counters(name PK, value BIGINT)
"""

from storage.models.base import Base
from storage.models.metrics import CounterRecord, GaugeRecord


__all__ = [
    "Base",
    "GaugeRecord",
    "CounterRecord",
]
