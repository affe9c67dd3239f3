"""
Core Module Package.

This package contains the pieces that both the agent and the
server depend on.

Components:
- models: Gauge/Counter variants and their wire form
- exceptions: Classified exception hierarchy
- retry: Error classifier and fixed-schedule retry policy
- logging_setup: Process-wide log format
"""

from core.exceptions import (
    ErrorClassification,
    MetricsException,
    TransientError,
    MetricNotFoundError,
    MetricValidationError,
    IntegrityError,
    ConfigurationError,
    FatalError,
    StorageError,
    StorageInitializationError,
    DeliveryError,
    RetryExhaustedError,
)
from core.models import (
    MetricKind,
    Gauge,
    Counter,
    Metric,
    MetricValue,
    Snapshot,
    metric_to_wire,
    metric_from_wire,
    batch_from_wire,
    batch_to_wire,
    parse_value,
    make_metric,
    validate_metric,
    freeze_snapshot,
    snapshot_to_batch,
)
from core.retry import (
    DEFAULT_RETRY_DELAYS,
    RetryAttempt,
    RetryPolicy,
    is_transient,
)


__all__ = [
    # Exceptions
    "ErrorClassification",
    "MetricsException",
    "TransientError",
    "MetricNotFoundError",
    "MetricValidationError",
    "IntegrityError",
    "ConfigurationError",
    "FatalError",
    "StorageError",
    "StorageInitializationError",
    "DeliveryError",
    "RetryExhaustedError",
    # Models
    "MetricKind",
    "Gauge",
    "Counter",
    "Metric",
    "MetricValue",
    "Snapshot",
    "metric_to_wire",
    "metric_from_wire",
    "batch_from_wire",
    "batch_to_wire",
    "parse_value",
    "make_metric",
    "validate_metric",
    "freeze_snapshot",
    "snapshot_to_batch",
    # Retry
    "DEFAULT_RETRY_DELAYS",
    "RetryAttempt",
    "RetryPolicy",
    "is_transient",
]
