"""
Core Module - Logging Setup.

One call per process, made by the agent and server entry points.
Components only ever call logging.getLogger(__name__).
"""

import logging


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Install the process-wide log format at the given level."""
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,
    )

    # aiohttp's own access log duplicates the server middleware
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
