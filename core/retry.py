"""
Core Module - Error Classifier and Retry Policy.

============================================================
RESPONSIBILITY
============================================================
Decides which failures are worth retrying and drives the retries.

- is_transient(): pure predicate over an exception
- RetryPolicy: fixed delay schedule, sync and async drivers

============================================================
RETRY SCHEDULE
============================================================
Attempt 1 -> wait 1s -> attempt 2 -> wait 3s -> attempt 3
          -> wait 5s -> attempt 4 -> RetryExhaustedError

A permanent error stops the loop immediately and is re-raised
unchanged. Both the delivery client and the relational store
use this one class.

============================================================
"""

import asyncio
import logging
import socket
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

import aiohttp
from sqlalchemy.exc import DBAPIError

from core.exceptions import MetricsException, RetryExhaustedError, TransientError


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_DELAYS: Tuple[float, ...] = (1.0, 3.0, 5.0)

# PostgreSQL SQLSTATE class 08: connection exception
CONNECTION_EXCEPTION_CLASS = "08"

TRANSIENT_MESSAGE_MARKERS = (
    "connection refused",
    "connection reset by peer",
    "i/o timeout",
    "could not connect to server",
    "server closed the connection",
    "timeout expired",
)

TRANSIENT_EXCEPTION_TYPES = (
    TransientError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    socket.timeout,
    aiohttp.ClientConnectionError,
    aiohttp.ServerTimeoutError,
)


# ============================================================
# ERROR CLASSIFIER
# ============================================================

def _error_chain(error: BaseException) -> List[BaseException]:
    """
    Walk explicit __cause__ and driver .orig links once each.

    Implicit __context__ is not followed: an error raised while
    handling a connection failure is classified on its own.
    """
    chain: List[BaseException] = []
    pending: List[BaseException] = [error]
    while pending:
        current = pending.pop()
        if any(current is seen for seen in chain):
            continue
        chain.append(current)
        for link in (
            current.__cause__,
            getattr(current, "orig", None),
        ):
            if isinstance(link, BaseException):
                pending.append(link)
    return chain


def _sqlstate(error: BaseException) -> Optional[str]:
    """Extract a SQLSTATE code from a driver error, if it has one."""
    for attr in ("pgcode", "sqlstate"):
        code = getattr(error, attr, None)
        if isinstance(code, str) and code:
            return code
    return None


def is_transient(error: BaseException) -> bool:
    """
    Classify an error as transient (retry may succeed) or permanent.

    Transient: connection establishment failures, connection resets,
    timeouts, and database connection-exception errors.

    Args:
        error: The exception to classify

    Returns:
        True if a retry may succeed
    """
    for link in _error_chain(error):
        if isinstance(link, MetricsException):
            if link.is_retryable:
                return True
            # Already classified by our own code; trust the classification
            if link is error:
                return False
            continue

        if isinstance(link, TRANSIENT_EXCEPTION_TYPES):
            return True

        if isinstance(link, DBAPIError) and link.connection_invalidated:
            return True

        code = _sqlstate(link)
        if code is not None and code.startswith(CONNECTION_EXCEPTION_CLASS):
            return True

        message = str(link).lower()
        if any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS):
            return True

    return False


# ============================================================
# RETRY POLICY
# ============================================================

@dataclass(frozen=True)
class RetryAttempt:
    """One failed attempt of a retried operation."""
    attempt: int
    error: BaseException
    delay: Optional[float]
    """Seconds waited before the next attempt; None if no retry followed."""


class RetryPolicy:
    """
    Fixed-schedule retry policy.

    ============================================================
    USAGE
    ============================================================
    policy = RetryPolicy()

    # Blocking callers (relational store)
    policy.run(conn_fn, arg)

    # Coroutines (delivery client)
    await policy.run_async(send_fn, payload)

    ============================================================
    """

    def __init__(
        self,
        delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        classifier: Callable[[BaseException], bool] = is_transient,
        sleep: Callable[[float], None] = time.sleep,
        async_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "operation",
    ) -> None:
        """
        Initialize the policy.

        Args:
            delays: Seconds to wait before attempts 2, 3, ...
            classifier: Predicate deciding whether an error is retried
            sleep: Blocking sleep used by run()
            async_sleep: Coroutine sleep used by run_async()
            name: Operation name used in logs and errors
        """
        self._delays = tuple(delays)
        self._classifier = classifier
        self._sleep = sleep
        self._async_sleep = async_sleep
        self._name = name

    @property
    def delays(self) -> Tuple[float, ...]:
        return self._delays

    @property
    def max_attempts(self) -> int:
        return len(self._delays) + 1

    def with_name(self, name: str) -> "RetryPolicy":
        """Same schedule and sleeps under a different operation name."""
        return RetryPolicy(
            delays=self._delays,
            classifier=self._classifier,
            sleep=self._sleep,
            async_sleep=self._async_sleep,
            name=name,
        )

    # --------------------------------------------------------
    # Decision
    # --------------------------------------------------------

    def _next_delay(
        self,
        attempt: int,
        error: BaseException,
        history: List[RetryAttempt],
    ) -> float:
        """
        Record a failed attempt and return the delay before the next one.

        Raises:
            The original error if it is permanent
            RetryExhaustedError if no attempts are left
        """
        if not self._classifier(error):
            history.append(RetryAttempt(attempt=attempt, error=error, delay=None))
            logger.debug(f"{self._name}: permanent error on attempt {attempt}: {error}")
            raise error

        if attempt >= self.max_attempts:
            history.append(RetryAttempt(attempt=attempt, error=error, delay=None))
            logger.error(f"{self._name}: giving up after {attempt} attempts: {error}")
            raise RetryExhaustedError(attempt, error, self._name, history) from error

        delay = self._delays[attempt - 1]
        history.append(RetryAttempt(attempt=attempt, error=error, delay=delay))
        logger.warning(
            f"{self._name}: attempt {attempt}/{self.max_attempts} failed, "
            f"retrying in {delay:g}s: {error}"
        )
        return delay

    # --------------------------------------------------------
    # Drivers
    # --------------------------------------------------------

    def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call fn, retrying transient failures with blocking sleeps."""
        history: List[RetryAttempt] = []
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                delay = self._next_delay(attempt, e, history)
            self._sleep(delay)

    async def run_async(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Await fn, retrying transient failures with asyncio sleeps."""
        history: List[RetryAttempt] = []
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn(*args, **kwargs)
            except Exception as e:
                delay = self._next_delay(attempt, e, history)
            await self._async_sleep(delay)
