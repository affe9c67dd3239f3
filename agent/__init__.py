"""
Agent Package.

Collects runtime metrics on the producing node and reports them
to the metrics server.

Modules:
- config: defaults, environment and CLI flags
- collector: psutil/gc sampling behind a lock
- sender: aiohttp delivery client with retry
- pipeline: poll/report loops and the bounded sender pool
- main: process entry point
"""

from agent.collector import RuntimeMetricsCollector
from agent.config import AgentConfig, load_config
from agent.pipeline import CollectionPipeline, PipelineStats
from agent.sender import DeliveryClient


__all__ = [
    "AgentConfig",
    "load_config",
    "RuntimeMetricsCollector",
    "DeliveryClient",
    "CollectionPipeline",
    "PipelineStats",
]
