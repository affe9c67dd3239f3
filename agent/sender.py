"""
Agent - Delivery Client.

============================================================
PURPOSE
============================================================
Posts metric batches to the server.

    snapshot -> batch -> IntegrityCodec.encode -> POST /updates/

The whole send-and-check-status operation is retried by the
shared RetryPolicy. Only transport failures (refused, reset,
timeout) are retried; any non-2xx answer is a permanent
DeliveryError.

============================================================
USAGE
============================================================
async with DeliveryClient("localhost:8080", key="secret") as client:
    await client.send_batch(collector.snapshot())

============================================================
"""

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import aiohttp

from core.exceptions import DeliveryError
from core.models import Metric, MetricKind, make_metric, snapshot_to_batch
from core.retry import RetryPolicy
from transport.codec import EncodedPayload, IntegrityCodec


logger = logging.getLogger(__name__)

HTTP_SCHEME = "http://"
HTTPS_SCHEME = "https://"

BATCH_ENDPOINT = "/updates/"
SINGLE_ENDPOINT = "/update/"


def normalize_address(address: str) -> str:
    """Prefix http:// when no scheme is given and drop a trailing slash."""
    if not address.startswith((HTTP_SCHEME, HTTPS_SCHEME)):
        address = HTTP_SCHEME + address
    return address.rstrip("/")


class DeliveryClient:
    """HTTP client for the metrics server."""

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        server_address: str,
        key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._base_url = normalize_address(server_address)
        self._codec = IntegrityCodec(key)
        self._timeout = timeout
        self._retry = retry_policy or RetryPolicy()
        self._session: Optional[aiohttp.ClientSession] = None

        self._sent = 0
        self._failed = 0

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def stats(self) -> Dict[str, int]:
        return {"sent": self._sent, "failed": self._failed}

    # --------------------------------------------------------
    # Session lifecycle
    # --------------------------------------------------------

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "DeliveryClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --------------------------------------------------------
    # Public API
    # --------------------------------------------------------

    async def send_batch(
        self,
        metrics: Union[Mapping[str, Any], Iterable[Metric]],
    ) -> int:
        """
        Send a snapshot or a list of metrics to /updates/.

        Args:
            metrics: Collector snapshot or ready-made batch

        Returns:
            Number of metrics sent (0 for an empty batch, no request made)

        Raises:
            DeliveryError: Server answered with a non-2xx status
            RetryExhaustedError: Transport kept failing
        """
        if isinstance(metrics, Mapping):
            batch = snapshot_to_batch(metrics)
        else:
            batch = list(metrics)

        if not batch:
            return 0

        payload = self._codec.encode(batch)
        await self._send(BATCH_ENDPOINT, payload)
        logger.debug(f"Sent batch of {len(batch)} metrics")
        return len(batch)

    async def send_metric(self, metric: Metric) -> None:
        """Send one metric to the legacy /update/ endpoint."""
        payload = self._codec.encode_bytes(self._codec.serialize_one(metric))
        await self._send(SINGLE_ENDPOINT, payload)

    async def send_value(self, kind: str, name: str, value: Any) -> None:
        """
        Build and send a single metric.

        Raises:
            MetricValidationError: Unknown kind or value of the wrong type
        """
        metric = make_metric(MetricKind.parse(kind), name, value)
        await self.send_metric(metric)

    # --------------------------------------------------------
    # Transport
    # --------------------------------------------------------

    async def _send(self, endpoint: str, payload: EncodedPayload) -> None:
        url = f"{self._base_url}{endpoint}"
        policy = self._retry.with_name(f"POST {endpoint}")
        try:
            await policy.run_async(self._post, url, payload)
        except Exception:
            self._failed += 1
            raise
        self._sent += 1

    async def _post(self, url: str, payload: EncodedPayload) -> None:
        if self._session is None:
            await self.start()

        async with self._session.post(
            url,
            data=payload.body,
            headers=payload.headers(),
        ) as response:
            if not 200 <= response.status < 300:
                text = await response.text()
                raise DeliveryError(
                    f"unexpected status: {response.status} {text.strip()[:200]}",
                    url=url,
                    http_status=response.status,
                )
            # Drain the body so the connection can be reused
            await response.read()
