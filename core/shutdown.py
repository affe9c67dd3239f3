"""
Core Module - Shutdown Signals.

Maps SIGINT/SIGTERM onto an asyncio.Event so the agent and the
server can stop gracefully from inside their event loops.
"""

import asyncio
import logging
import signal
import sys
from typing import Callable


logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_signal_handlers(stop_event: asyncio.Event) -> Callable[[], None]:
    """
    Set stop_event when the process receives SIGINT or SIGTERM.

    Must be called from inside the running loop.

    Returns:
        Callable that removes the handlers again
    """
    def _on_signal(sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down")
        stop_event.set()

    if sys.platform == "win32":
        # Windows has no loop signal support; Ctrl+C still raises KeyboardInterrupt
        return lambda: None

    loop = asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, _on_signal, sig)

    def _restore() -> None:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)

    return _restore
