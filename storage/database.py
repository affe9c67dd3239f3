"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Creates SQLAlchemy engines for the relational metric store.

- Connection pooling with pre-ping
- Bounded connect and statement timeouts
- Liveness check

============================================================
DESIGN PRINCIPLES
============================================================
- No module-level engine; the caller owns the engine it creates
- PostgreSQL in production, SQLite accepted for local runs and tests
- Credentials never reach the log

============================================================
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the relational store."""
    dsn: str
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 10
    pool_recycle: int = 1800
    connect_timeout: int = 3
    statement_timeout: float = 10.0
    echo: bool = False


def describe_dsn(dsn: str) -> str:
    """Return the DSN without credentials, for logging."""
    try:
        return make_url(dsn).render_as_string(hide_password=True).split("@")[-1]
    except Exception:
        return "<unparseable dsn>"


def normalize_dsn(dsn: str) -> str:
    """Accept libpq-style "postgres://" URLs as well."""
    if dsn.startswith("postgres://"):
        return "postgresql://" + dsn[len("postgres://"):]
    return dsn


def connect_args_for(config: DatabaseConfig, backend: str) -> Dict[str, Any]:
    """
    DBAPI connect arguments bounding every database call.

    PostgreSQL gets a server-side statement_timeout in milliseconds;
    SQLite waits at most statement_timeout seconds on a locked file.
    """
    if backend == "sqlite":
        return {"check_same_thread": False, "timeout": config.statement_timeout}
    if backend == "postgresql":
        return {
            "connect_timeout": config.connect_timeout,
            "options": f"-c statement_timeout={int(config.statement_timeout * 1000)}",
        }
    return {"connect_timeout": config.connect_timeout}


def create_database_engine(config: DatabaseConfig) -> Engine:
    """
    Create SQLAlchemy engine with connection pooling.

    Args:
        config: Database connection settings

    Returns:
        SQLAlchemy Engine
    """
    dsn = normalize_dsn(config.dsn)
    url = make_url(dsn)

    logger.info(f"Creating database engine for: {describe_dsn(dsn)}")

    if url.get_backend_name() == "sqlite":
        options = {"connect_args": connect_args_for(config, "sqlite")}
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            options["poolclass"] = StaticPool
        engine = create_engine(url, echo=config.echo, future=True, **options)
    else:
        engine = create_engine(
            url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            pool_pre_ping=True,
            connect_args=connect_args_for(config, url.get_backend_name()),
            echo=config.echo,
            future=True,
        )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("Database connection established")

    return engine


def ping_engine(engine: Engine) -> None:
    """
    Verify the database answers a trivial query.

    Raises:
        sqlalchemy.exc.SQLAlchemyError: If the database cannot be reached
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1")).fetchone()
