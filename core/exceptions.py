"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception hierarchy shared by the agent and the server.

- Classifies every failure for retry decisions
- Maps failures onto response codes at the HTTP boundary
- Carries context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
MetricsException (base)
├── TransientError               (retried)
├── MetricNotFoundError          (typed miss)
├── MetricValidationError        (malformed input, never retried)
│   └── IntegrityError           (bad signature / undecodable payload)
├── ConfigurationError
└── FatalError
    ├── StorageError
    │   └── StorageInitializationError
    ├── DeliveryError
    └── RetryExhaustedError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NOT_FOUND = "not_found"
    """Requested metric does not exist."""

    VALIDATION = "validation"
    """Malformed name, value or type."""

    INTEGRITY = "integrity"
    """Payload signature mismatch or undecodable payload."""

    FATAL = "fatal"
    """Backend unreachable after retries, or initialization failure."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class MetricsException(Exception):
    """
    Base exception for all metrics pipeline errors.

    All exceptions carry:
    - classification: for retry and boundary mapping decisions
    - context: for debugging
    - timestamp: when the error occurred
    """

    default_classification: ErrorClassification = ErrorClassification.FATAL

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)

        self.message = message
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause is not None:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_retryable(self) -> bool:
        """Check if a retry may succeed."""
        return self.classification == ErrorClassification.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


# ============================================================
# TRANSIENT ERRORS
# ============================================================

class TransientError(MetricsException):
    """Connection, reset or timeout class failure."""

    default_classification = ErrorClassification.TRANSIENT


# ============================================================
# LOOKUP ERRORS
# ============================================================

class MetricNotFoundError(MetricsException):
    """
    Raised when a requested metric is absent from its kind's mapping.

    Surfaced at the HTTP boundary as a 404, never as a crash.
    """

    default_classification = ErrorClassification.NOT_FOUND

    def __init__(self, kind: str, name: str):
        super().__init__(
            message=f"{kind} not found: {name}",
            context={"kind": kind, "name": name},
        )
        self.kind = kind
        self.name = name


# ============================================================
# INPUT ERRORS
# ============================================================

class MetricValidationError(MetricsException):
    """Malformed metric name, value or type."""

    default_classification = ErrorClassification.VALIDATION

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        actual: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if field:
            context["field"] = field
        if actual is not None:
            context["actual"] = str(actual)[:100]

        super().__init__(message, context=context, **kwargs)


class IntegrityError(MetricValidationError):
    """Payload failed signature verification or could not be decoded."""

    default_classification = ErrorClassification.INTEGRITY


class ConfigurationError(MetricsException):
    """Invalid configuration value."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            context={"config_key": key, "actual_value": str(value)[:100]},
        )


# ============================================================
# FATAL ERRORS
# ============================================================

class FatalError(MetricsException):
    """Base class for failures surfaced to the top-level caller."""

    default_classification = ErrorClassification.FATAL


class StorageError(FatalError):
    """A store operation failed."""

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if backend:
            context["backend"] = backend
        if operation:
            context["operation"] = operation

        super().__init__(message, context=context, **kwargs)
        self.backend = backend
        self.operation = operation


class StorageInitializationError(StorageError):
    """Backend could not be reached or its tables could not be created."""


class DeliveryError(FatalError):
    """The server rejected a payload or could not be reached."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        http_status: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if url:
            context["url"] = url
        if http_status is not None:
            context["http_status"] = http_status

        super().__init__(message, context=context, **kwargs)
        self.url = url
        self.http_status = http_status


class RetryExhaustedError(FatalError):
    """All retry attempts failed with transient errors."""

    def __init__(
        self,
        attempts: int,
        last_error: BaseException,
        operation: str = "",
        history: Optional[List[Any]] = None,
    ):
        prefix = f"{operation}: " if operation else ""
        super().__init__(
            message=f"{prefix}after {attempts} attempts, last error: {last_error}",
            context={"attempts": attempts, "operation": operation},
            cause=last_error,
        )
        self.attempts = attempts
        self.last_error = last_error
        self.history = history or []
