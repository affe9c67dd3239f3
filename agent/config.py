"""
Agent - Configuration.

============================================================
RESPONSIBILITY
============================================================
Builds the agent configuration from three layers, lowest to
highest precedence:

1. Dataclass defaults
2. Environment (.env is loaded first)
3. Command-line flags

============================================================
ENVIRONMENT
============================================================
ADDRESS          -a   server host:port          (localhost:8080)
POLL_INTERVAL    -p   seconds between polls     (2)
REPORT_INTERVAL  -r   seconds between reports   (10)
KEY              -k   HMAC signing key          (empty = unsigned)
RATE_LIMIT       -l   concurrent senders        (1)
LOG_LEVEL        --log-level                    (INFO)

============================================================
"""

import argparse
from dataclasses import dataclass, replace
from typing import List, Mapping, Optional, Sequence

from dotenv import load_dotenv

from core.environment import env_int, env_str


LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@dataclass(frozen=True)
class AgentConfig:
    """Agent runtime configuration."""
    server_address: str = "localhost:8080"
    poll_interval: int = 2
    report_interval: int = 10
    key: str = ""
    rate_limit: int = 1
    request_timeout: float = 10.0
    shutdown_timeout: float = 5.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AgentConfig":
        """Load configuration from environment variables."""
        defaults = cls()
        return cls(
            server_address=env_str("ADDRESS", defaults.server_address, environ),
            poll_interval=env_int("POLL_INTERVAL", defaults.poll_interval, environ),
            report_interval=env_int("REPORT_INTERVAL", defaults.report_interval, environ),
            key=env_str("KEY", defaults.key, environ),
            rate_limit=env_int("RATE_LIMIT", defaults.rate_limit, environ),
            log_level=env_str("LOG_LEVEL", defaults.log_level, environ).upper(),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.server_address:
            errors.append("server_address is required")

        if self.poll_interval < 1:
            errors.append("poll_interval must be at least 1 second")

        if self.report_interval < 1:
            errors.append("report_interval must be at least 1 second")

        if self.rate_limit < 1:
            errors.append("rate_limit must be at least 1")

        if self.request_timeout <= 0:
            errors.append("request_timeout must be positive")

        if self.log_level not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")

        return errors


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser(defaults: AgentConfig) -> argparse.ArgumentParser:
    """Create the argument parser; environment values become the defaults."""
    parser = argparse.ArgumentParser(
        prog="metrics-agent",
        description="Collect runtime metrics and report them to the metrics server",
    )

    parser.add_argument(
        "-a",
        dest="server_address",
        default=defaults.server_address,
        metavar="ADDRESS",
        help=f"Server address host:port (default: {defaults.server_address})",
    )
    parser.add_argument(
        "-p",
        dest="poll_interval",
        type=int,
        default=defaults.poll_interval,
        metavar="SECONDS",
        help=f"Poll interval in seconds (default: {defaults.poll_interval})",
    )
    parser.add_argument(
        "-r",
        dest="report_interval",
        type=int,
        default=defaults.report_interval,
        metavar="SECONDS",
        help=f"Report interval in seconds (default: {defaults.report_interval})",
    )
    parser.add_argument(
        "-k",
        dest="key",
        default=defaults.key,
        metavar="KEY",
        help="Key for HashSHA256 payload signatures",
    )
    parser.add_argument(
        "-l",
        dest="rate_limit",
        type=int,
        default=defaults.rate_limit,
        metavar="N",
        help=f"Maximum concurrent outgoing requests (default: {defaults.rate_limit})",
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
) -> AgentConfig:
    """
    Resolve the agent configuration.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])
        environ: Environment mapping (defaults to os.environ after .env)

    Returns:
        Resolved configuration
    """
    if environ is None:
        load_dotenv()

    base = AgentConfig.from_env(environ)
    args = create_parser(base).parse_args(argv)

    return replace(
        base,
        server_address=args.server_address,
        poll_interval=args.poll_interval,
        report_interval=args.report_interval,
        key=args.key,
        rate_limit=args.rate_limit,
        log_level=args.log_level,
    )
