"""
Core Module - Environment Parsing.

Typed readers for environment variables used by the agent and
server configuration. Unparseable values are logged and the
default is kept, so a typo in the environment never stops the
process from starting.
"""

import logging
import os
import re
from typing import Mapping, Optional


logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "f", "no", "n", "off"}

_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")


def _raw(environ: Optional[Mapping[str, str]], key: str) -> Optional[str]:
    env = os.environ if environ is None else environ
    value = env.get(key)
    if value is None or value == "":
        return None
    return value


def env_str(key: str, default: str, environ: Optional[Mapping[str, str]] = None) -> str:
    value = _raw(environ, key)
    return default if value is None else value


def env_int(key: str, default: int, environ: Optional[Mapping[str, str]] = None) -> int:
    value = _raw(environ, key)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        logger.warning(f"Ignoring invalid integer {key}={value!r}, using {default}")
        return default


def env_bool(key: str, default: bool, environ: Optional[Mapping[str, str]] = None) -> bool:
    value = _raw(environ, key)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    logger.warning(f"Ignoring invalid boolean {key}={value!r}, using {default}")
    return default


def parse_duration(raw: str) -> float:
    """
    Parse seconds from "300", "300s", "1.5m", "250ms" or "1h".

    Raises:
        ValueError: If the string is not a duration
    """
    match = _DURATION_RE.match(raw)
    if match is None:
        raise ValueError(f"invalid duration: {raw!r}")
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[unit or "s"]


def env_duration(key: str, default: float, environ: Optional[Mapping[str, str]] = None) -> float:
    value = _raw(environ, key)
    if value is None:
        return default
    try:
        return parse_duration(value)
    except ValueError:
        logger.warning(f"Ignoring invalid duration {key}={value!r}, using {default:g}s")
        return default


def parse_bool(raw: str) -> bool:
    """argparse type for true/false flags."""
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean: {raw!r}")
