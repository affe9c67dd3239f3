"""
Server Package.

Receives metrics over HTTP and keeps them in the configured store.

Modules:
- config: defaults, environment and CLI flags
- api: aiohttp routes and middlewares
- main: MetricsServer lifecycle and process entry point
"""

from server.api import create_app
from server.config import ServerConfig, load_config


__all__ = [
    "create_app",
    "ServerConfig",
    "load_config",
]
