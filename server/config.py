"""
Server - Configuration.

============================================================
RESPONSIBILITY
============================================================
Builds the server configuration from defaults, environment
(.env is loaded first) and command-line flags, in increasing
order of precedence.

============================================================
ENVIRONMENT
============================================================
ADDRESS             -a   listen host:port              (localhost:8080)
STORE_INTERVAL      -i   seconds between file flushes  (5; 0 = sync)
FILE_STORAGE_PATH   -f   snapshot file                 (/tmp/metrics-db.json)
RESTORE             -r   load snapshot at start        (true)
DATABASE_DSN        -d   relational store DSN          (empty = off)
KEY                 -k   HMAC signing key              (empty = off)
FLUSH_THRESHOLD          pending writes forcing flush  (10)
LOG_LEVEL           --log-level                        (INFO)

============================================================
"""

import argparse
from dataclasses import dataclass, replace
from typing import List, Mapping, Optional, Sequence, Tuple

from dotenv import load_dotenv

from core.environment import (
    env_bool,
    env_duration,
    env_int,
    env_str,
    parse_bool,
    parse_duration,
)
from storage.factory import StorageConfig


LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@dataclass(frozen=True)
class ServerConfig:
    """Server runtime configuration."""
    address: str = "localhost:8080"
    store_interval: float = 5.0
    file_storage_path: str = "/tmp/metrics-db.json"
    restore: bool = True
    database_dsn: str = ""
    key: str = ""
    flush_threshold: int = 10
    shutdown_timeout: float = 5.0
    ping_timeout: float = 3.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """Load configuration from environment variables."""
        defaults = cls()
        return cls(
            address=env_str("ADDRESS", defaults.address, environ),
            store_interval=env_duration("STORE_INTERVAL", defaults.store_interval, environ),
            file_storage_path=env_str("FILE_STORAGE_PATH", defaults.file_storage_path, environ),
            restore=env_bool("RESTORE", defaults.restore, environ),
            database_dsn=env_str("DATABASE_DSN", defaults.database_dsn, environ),
            key=env_str("KEY", defaults.key, environ),
            flush_threshold=env_int("FLUSH_THRESHOLD", defaults.flush_threshold, environ),
            log_level=env_str("LOG_LEVEL", defaults.log_level, environ).upper(),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        try:
            self.host_port()
        except ValueError as e:
            errors.append(str(e))

        if self.store_interval < 0:
            errors.append("store_interval must not be negative")

        if self.flush_threshold < 1:
            errors.append("flush_threshold must be at least 1")

        if self.shutdown_timeout <= 0:
            errors.append("shutdown_timeout must be positive")

        if self.log_level not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")

        return errors

    def host_port(self) -> Tuple[str, int]:
        """
        Split the listen address.

        An empty host (":8080") binds every interface.

        Raises:
            ValueError: If the address has no valid port
        """
        host, sep, port = self.address.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError(f"address must be host:port, got {self.address!r}")
        return host or "0.0.0.0", int(port)

    def to_storage_config(self) -> StorageConfig:
        return StorageConfig(
            database_dsn=self.database_dsn,
            file_storage_path=self.file_storage_path,
            store_interval=self.store_interval,
            restore=self.restore,
            flush_threshold=self.flush_threshold,
        )


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    """Create the argument parser; environment values become the defaults."""
    parser = argparse.ArgumentParser(
        prog="metrics-server",
        description="Receive, store and serve runtime metrics",
    )

    parser.add_argument(
        "-a",
        dest="address",
        default=defaults.address,
        metavar="ADDRESS",
        help=f"Listen address host:port (default: {defaults.address})",
    )
    parser.add_argument(
        "-i",
        dest="store_interval",
        type=parse_duration,
        default=defaults.store_interval,
        metavar="SECONDS",
        help=f"File flush interval, 0 for synchronous saves (default: {defaults.store_interval:g})",
    )
    parser.add_argument(
        "-f",
        dest="file_storage_path",
        default=defaults.file_storage_path,
        metavar="PATH",
        help=f"Snapshot file, empty to disable (default: {defaults.file_storage_path})",
    )
    parser.add_argument(
        "-r",
        dest="restore",
        type=parse_bool,
        default=defaults.restore,
        metavar="BOOL",
        help=f"Restore the snapshot on start (default: {str(defaults.restore).lower()})",
    )
    parser.add_argument(
        "-d",
        dest="database_dsn",
        default=defaults.database_dsn,
        metavar="DSN",
        help="Database DSN; takes precedence over the file store",
    )
    parser.add_argument(
        "-k",
        dest="key",
        default=defaults.key,
        metavar="KEY",
        help="Key for HashSHA256 payload signatures",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=defaults.log_level,
        help=f"Logging level (default: {defaults.log_level})",
    )

    return parser


def load_config(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """
    Resolve the server configuration.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])
        environ: Environment mapping (defaults to os.environ after .env)

    Returns:
        Resolved configuration
    """
    if environ is None:
        load_dotenv()

    base = ServerConfig.from_env(environ)
    args = create_parser(base).parse_args(argv)

    return replace(
        base,
        address=args.address,
        store_interval=args.store_interval,
        file_storage_path=args.file_storage_path,
        restore=args.restore,
        database_dsn=args.database_dsn,
        key=args.key,
        log_level=args.log_level,
    )
