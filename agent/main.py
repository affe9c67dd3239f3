"""
Agent - Entry Point.

============================================================
USAGE
============================================================
metrics-agent -a localhost:8080 -p 2 -r 10 -k secret -l 2
python -m agent.main --log-level DEBUG

============================================================
"""

import asyncio
import logging
import sys
from typing import Optional, Sequence

from agent.collector import RuntimeMetricsCollector
from agent.config import AgentConfig, load_config
from agent.pipeline import CollectionPipeline
from agent.sender import DeliveryClient
from core.logging_setup import configure_logging
from core.shutdown import install_signal_handlers


logger = logging.getLogger(__name__)


def build_pipeline(config: AgentConfig) -> CollectionPipeline:
    """Wire collector, delivery client and pipeline for a configuration."""
    collector = RuntimeMetricsCollector()
    client = DeliveryClient(
        config.server_address,
        key=config.key,
        timeout=config.request_timeout,
    )
    return CollectionPipeline(config, collector, client)


async def run_agent(config: AgentConfig) -> None:
    """Run the agent until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()
    restore_signals = install_signal_handlers(stop_event)

    pipeline = build_pipeline(config)
    logger.info(
        f"Starting agent: server={config.server_address}, "
        f"signing={'on' if config.key else 'off'}"
    )
    try:
        await pipeline.run(stop_event)
    finally:
        restore_signals()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    config = load_config(argv)
    configure_logging(config.log_level)

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        return 1

    try:
        asyncio.run(run_agent(config))
    except KeyboardInterrupt:
        logger.info("Agent interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
