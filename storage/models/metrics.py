"""
Metric ORM Models.

============================================================
PURPOSE
============================================================
The two tables backing the relational metric store.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Mutability: MUTABLE (upserted in place)
- gauges:   value replaced on conflict
- counters: value incremented on conflict

============================================================
"""

from sqlalchemy import BigInteger, Double, Text
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


class GaugeRecord(Base):
    """Last written value of each gauge."""

    __tablename__ = "gauges"

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[float] = mapped_column(Double, nullable=False)

    def __repr__(self) -> str:
        return f"<GaugeRecord({self.name}={self.value})>"


class CounterRecord(Base):
    """Running total of each counter."""

    __tablename__ = "counters"

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def __repr__(self) -> str:
        return f"<CounterRecord({self.name}={self.value})>"
