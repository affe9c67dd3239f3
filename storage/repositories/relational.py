"""
Relational Repository.

============================================================
PURPOSE
============================================================
Metric store backed by two SQL tables:

    gauges(name TEXT PRIMARY KEY, value DOUBLE PRECISION NOT NULL)
    counters(name TEXT PRIMARY KEY, value BIGINT NOT NULL)

============================================================
MERGE SEMANTICS
============================================================
Writes are INSERT ... ON CONFLICT (name) DO UPDATE:
- gauges:   SET value = excluded.value
- counters: SET value = counters.value + excluded.value

so the database applies the same overwrite/accumulate rules
as the in-memory store.

============================================================
FAILURE SEMANTICS
============================================================
- Every statement group runs in one transaction
- Transient (connection-class) errors retry the whole group
- Permanent errors roll back and raise StorageError at once
- Write errors are always propagated to the caller

============================================================
"""

import logging
from typing import Any, Callable, Iterable, Optional, TypeVar

from sqlalchemy import select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import (
    MetricNotFoundError,
    MetricsException,
    StorageError,
    StorageInitializationError,
)
from core.models import Counter, Gauge, Metric, MetricKind, validate_metric
from core.retry import RetryPolicy
from storage.database import ping_engine
from storage.models import Base, CounterRecord, GaugeRecord
from storage.repositories.base import MetricRepository, StoreState


T = TypeVar("T")

GAUGES = GaugeRecord.__table__
COUNTERS = CounterRecord.__table__

REPEATABLE_READ = text("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ")

UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class RelationalRepository(MetricRepository):
    """
    Metric store in a SQL database.

    ============================================================
    USAGE
    ============================================================
    engine = create_database_engine(DatabaseConfig(dsn=...))
    repo = RelationalRepository(engine)  # pings and creates tables

    ============================================================
    """

    backend_name = "relational"

    def __init__(self, engine: Engine, retry_policy: Optional[RetryPolicy] = None) -> None:
        """
        Initialize the repository.

        Args:
            engine: SQLAlchemy engine (injected)
            retry_policy: Policy for transient failures

        Raises:
            StorageInitializationError: If the database cannot be reached
                or the tables cannot be created
        """
        self._engine = engine
        self._retry = retry_policy or RetryPolicy(name="relational")
        self._logger = logging.getLogger(f"repository.{self.backend_name}")

        dialect = engine.dialect.name
        if dialect not in UPSERT_DIALECTS:
            raise StorageInitializationError(
                f"Unsupported database dialect: {dialect}",
                backend=self.backend_name,
                operation="init",
            )
        self._insert = UPSERT_DIALECTS[dialect]
        self._dialect = dialect

        self._initialize()

    @property
    def engine(self) -> Engine:
        return self._engine

    # =========================================================
    # INITIALIZATION
    # =========================================================

    def _initialize(self) -> None:
        """Verify connectivity, then create both tables if absent."""
        try:
            self._retry.with_name("database ping").run(ping_engine, self._engine)
            self._retry.with_name("create tables").run(
                Base.metadata.create_all,
                self._engine,
                tables=[GAUGES, COUNTERS],
                checkfirst=True,
            )
        except Exception as e:
            self._logger.error(f"Failed to initialize metric tables: {e}")
            raise StorageInitializationError(
                f"Failed to initialize tables: {e}",
                backend=self.backend_name,
                operation="init",
                cause=e,
            ) from e

        self._logger.info("Metric tables ready (gauges, counters)")

    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================

    def _gauge_upsert(self, name: str, value: float) -> Any:
        stmt = self._insert(GAUGES).values(name=name, value=float(value))
        return stmt.on_conflict_do_update(
            index_elements=[GAUGES.c.name],
            set_={"value": stmt.excluded.value},
        )

    def _counter_upsert(self, name: str, delta: int) -> Any:
        stmt = self._insert(COUNTERS).values(name=name, value=int(delta))
        return stmt.on_conflict_do_update(
            index_elements=[COUNTERS.c.name],
            set_={"value": COUNTERS.c.value + stmt.excluded.value},
        )

    def _upsert(self, metric: Metric) -> Any:
        if isinstance(metric, Gauge):
            return self._gauge_upsert(metric.name, metric.value)
        if isinstance(metric, Counter):
            return self._counter_upsert(metric.name, metric.delta)
        raise TypeError(f"Unsupported metric object: {type(metric).__name__}")

    def _in_transaction(self, operation: str, work: Callable[[Connection], T]) -> T:
        """
        Run work inside one transaction under the retry policy.

        Raises:
            MetricNotFoundError: Passed through from work
            RetryExhaustedError: Transient errors on every attempt
            StorageError: Any permanent database error
        """
        def attempt() -> T:
            with self._engine.begin() as conn:
                return work(conn)

        try:
            return self._retry.with_name(f"{self.backend_name} {operation}").run(attempt)
        except MetricsException:
            raise
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise  # Never reached, _handle_db_error always raises

    def _handle_db_error(self, error: SQLAlchemyError, operation: str) -> None:
        """
        Wrap a permanent database error with context.

        Raises:
            StorageError: Always
        """
        self._logger.error(f"Database error in {operation}: {error}")

        if isinstance(error, SQLAlchemyIntegrityError):
            message = f"Constraint violated in {operation}: {error.orig}"
        else:
            message = f"Database error in {operation}: {error}"

        raise StorageError(
            message,
            backend=self.backend_name,
            operation=operation,
            cause=error,
        ) from error

    # =========================================================
    # WRITES
    # =========================================================

    def update_gauge(self, name: str, value: float) -> None:
        stmt = self._gauge_upsert(name, value)
        self._in_transaction("update_gauge", lambda conn: conn.execute(stmt))

    def update_counter(self, name: str, delta: int) -> None:
        stmt = self._counter_upsert(name, delta)
        self._in_transaction("update_counter", lambda conn: conn.execute(stmt))

    def update_batch(self, metrics: Iterable[Metric]) -> None:
        """Apply the whole batch in one transaction; any error rolls it all back."""
        statements = [self._upsert(validate_metric(metric)) for metric in metrics]
        if not statements:
            return

        def apply(conn: Connection) -> None:
            for stmt in statements:
                conn.execute(stmt)

        self._in_transaction("update_batch", apply)
        self._logger.debug(f"Applied batch of {len(statements)} metrics")

    # =========================================================
    # READS
    # =========================================================

    def get_gauge(self, name: str) -> float:
        def read(conn: Connection) -> float:
            value = conn.execute(
                select(GAUGES.c.value).where(GAUGES.c.name == name)
            ).scalar_one_or_none()
            if value is None:
                raise MetricNotFoundError(MetricKind.GAUGE.value, name)
            return float(value)

        return self._in_transaction("get_gauge", read)

    def get_counter(self, name: str) -> int:
        def read(conn: Connection) -> int:
            value = conn.execute(
                select(COUNTERS.c.value).where(COUNTERS.c.name == name)
            ).scalar_one_or_none()
            if value is None:
                raise MetricNotFoundError(MetricKind.COUNTER.value, name)
            return int(value)

        return self._in_transaction("get_counter", read)

    def get_state(self) -> StoreState:
        def read(conn: Connection) -> StoreState:
            if self._dialect == "postgresql":
                # Both tables from one snapshot
                conn.execute(REPEATABLE_READ)
            gauges = {
                row.name: float(row.value)
                for row in conn.execute(select(GAUGES.c.name, GAUGES.c.value))
            }
            counters = {
                row.name: int(row.value)
                for row in conn.execute(select(COUNTERS.c.name, COUNTERS.c.value))
            }
            return StoreState(gauges=gauges, counters=counters)

        return self._in_transaction("get_all", read)

    # =========================================================
    # DURABILITY AND LIFECYCLE
    # =========================================================

    def save_snapshot(self, dest: Optional[str]) -> None:
        """Durable by construction; nothing to write."""

    def load_snapshot(self, src: Optional[str]) -> None:
        """Durable by construction; nothing to load."""

    def ping(self) -> None:
        try:
            ping_engine(self._engine)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "ping")

    def close(self) -> None:
        self._engine.dispose()
        self._logger.info("Database engine disposed")
