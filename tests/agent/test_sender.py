"""
Tests for the delivery client.

============================================================
PURPOSE
============================================================
- Wire framing: gzip body, headers, HashSHA256
- Non-2xx answers are permanent
- Connection failures follow the retry schedule
- End to end against the real server application

============================================================
"""

import gzip
import json

import pytest
from aiohttp import test_utils, web

from agent.sender import DeliveryClient, normalize_address
from core.exceptions import DeliveryError, MetricValidationError, RetryExhaustedError
from core.models import Counter, Gauge
from core.retry import RetryPolicy
from server.api import create_app
from storage.repositories.memory import MemoryRepository
from transport.codec import IntegrityCodec


# ============================================================
# FIXTURES
# ============================================================

class RecordingAsyncSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def sleeper():
    return RecordingAsyncSleep()


@pytest.fixture
def policy(sleeper):
    return RetryPolicy(async_sleep=sleeper)


def recording_app(received, status=200):
    """App that stores raw requests and answers with a fixed status."""
    async def handler(request):
        received.append({
            "path": request.path,
            "headers": dict(request.headers),
            "body": await request.read(),
        })
        return web.Response(text="[]", status=status, content_type="application/json")

    app = web.Application(handler_args={"auto_decompress": False})
    app.router.add_post("/updates/", handler)
    app.router.add_post("/update/", handler)
    return app


# ============================================================
# TESTS
# ============================================================

class TestNormalizeAddress:
    """Tests for address handling."""

    def test_adds_scheme(self):
        assert normalize_address("localhost:8080") == "http://localhost:8080"

    def test_keeps_scheme(self):
        assert normalize_address("https://metrics.local/") == "https://metrics.local"


class TestFraming:
    """Tests for request framing."""

    @pytest.mark.asyncio
    async def test_batch_request_is_gzipped_and_signed(self, policy):
        received = []
        async with test_utils.TestServer(recording_app(received)) as server:
            async with DeliveryClient(f"127.0.0.1:{server.port}", key="secret", retry_policy=policy) as client:
                sent = await client.send_batch({"PollCount": 3, "RandomValue": 0.5})

        assert sent == 2
        request = received[0]
        assert request["path"] == "/updates/"
        assert request["headers"]["Content-Encoding"] == "gzip"
        assert request["headers"]["Content-Type"] == "application/json"

        plain = gzip.decompress(request["body"])
        assert request["headers"]["HashSHA256"] == IntegrityCodec("secret").sign(plain)
        assert sorted(json.loads(plain), key=lambda m: m["id"]) == [
            {"delta": 3, "id": "PollCount", "type": "counter"},
            {"id": "RandomValue", "type": "gauge", "value": 0.5},
        ]

    @pytest.mark.asyncio
    async def test_no_key_no_signature(self, policy):
        received = []
        async with test_utils.TestServer(recording_app(received)) as server:
            async with DeliveryClient(f"127.0.0.1:{server.port}", retry_policy=policy) as client:
                await client.send_batch([Gauge("g", 1.0)])

        assert "HashSHA256" not in received[0]["headers"]

    @pytest.mark.asyncio
    async def test_empty_batch_sends_nothing(self, policy):
        received = []
        async with test_utils.TestServer(recording_app(received)) as server:
            async with DeliveryClient(f"127.0.0.1:{server.port}", retry_policy=policy) as client:
                assert await client.send_batch({}) == 0

        assert received == []

    @pytest.mark.asyncio
    async def test_single_metric_endpoint(self, policy):
        received = []
        async with test_utils.TestServer(recording_app(received)) as server:
            async with DeliveryClient(f"127.0.0.1:{server.port}", retry_policy=policy) as client:
                await client.send_value("counter", "hits", 2)

        assert received[0]["path"] == "/update/"
        assert json.loads(gzip.decompress(received[0]["body"])) == {
            "delta": 2, "id": "hits", "type": "counter",
        }

    @pytest.mark.asyncio
    async def test_send_value_rejects_wrong_type(self, policy):
        client = DeliveryClient("127.0.0.1:1", retry_policy=policy)
        with pytest.raises(MetricValidationError):
            await client.send_value("gauge", "g", 1)
        with pytest.raises(MetricValidationError):
            await client.send_value("histogram", "h", 1.0)


class TestFailures:
    """Tests for error handling and retries."""

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self, policy, sleeper):
        received = []
        async with test_utils.TestServer(recording_app(received, status=500)) as server:
            async with DeliveryClient(f"127.0.0.1:{server.port}", retry_policy=policy) as client:
                with pytest.raises(DeliveryError) as exc_info:
                    await client.send_batch([Counter("c", 1)])

                assert client.stats == {"sent": 0, "failed": 1}

        assert exc_info.value.http_status == 500
        assert len(received) == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_connection_refused_follows_schedule(self, policy, sleeper):
        port = test_utils.unused_port()
        async with DeliveryClient(f"127.0.0.1:{port}", retry_policy=policy) as client:
            with pytest.raises(RetryExhaustedError) as exc_info:
                await client.send_batch([Counter("c", 1)])

        assert exc_info.value.attempts == 4
        assert sleeper.delays == [1.0, 3.0, 5.0]


class TestEndToEnd:
    """Tests against the real server application."""

    @pytest.mark.asyncio
    async def test_counter_accumulates_on_server(self, policy):
        repository = MemoryRepository()
        app = create_app(repository, key="shared")

        async with test_utils.TestServer(app) as server:
            async with DeliveryClient(f"127.0.0.1:{server.port}", key="shared", retry_policy=policy) as client:
                await client.send_batch({"PollCount": 5, "Alloc": 10.0})
                await client.send_batch({"PollCount": 3, "Alloc": 20.0})

        assert repository.get_counter("PollCount") == 8
        assert repository.get_gauge("Alloc") == 20.0

    @pytest.mark.asyncio
    async def test_key_mismatch_is_rejected(self, policy):
        repository = MemoryRepository()
        app = create_app(repository, key="server-key")

        async with test_utils.TestServer(app) as server:
            async with DeliveryClient(f"127.0.0.1:{server.port}", key="agent-key", retry_policy=policy) as client:
                with pytest.raises(DeliveryError) as exc_info:
                    await client.send_batch({"PollCount": 1})

        assert exc_info.value.http_status == 400
        assert repository.get_all() == {}
