"""
Tests for the agent collection pipeline.

============================================================
PURPOSE
============================================================
- Full queue drops snapshots instead of blocking
- Workers deliver queued snapshots in order
- Shutdown drains within the window, then cancels
- Failures are counted, never fatal

============================================================
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent.config import AgentConfig
from agent.pipeline import CollectionPipeline
from core.exceptions import ConfigurationError, RetryExhaustedError


@pytest.fixture
def collector():
    collector = MagicMock()
    collector.snapshot.return_value = {"PollCount": 1}
    return collector


@pytest.fixture
def client():
    client = AsyncMock()
    client.send_batch = AsyncMock(return_value=1)
    return client


def make_pipeline(collector, client, **overrides):
    # Long intervals: loops stay idle unless a test drives them
    settings = {"poll_interval": 3600, "report_interval": 3600, "rate_limit": 1}
    settings.update(overrides)
    return CollectionPipeline(AgentConfig(**settings), collector, client)


class TestSubmit:
    """Tests for the bounded queue."""

    @pytest.mark.asyncio
    async def test_full_queue_drops_snapshot(self, collector, client):
        release = asyncio.Event()

        async def blocked_send(snapshot):
            await release.wait()
            return 1

        client.send_batch.side_effect = blocked_send
        pipeline = make_pipeline(collector, client)
        await pipeline.start()

        assert pipeline.submit({"n": 1}) is True
        await asyncio.sleep(0)  # worker takes the first snapshot
        assert pipeline.submit({"n": 2}) is True
        assert pipeline.submit({"n": 3}) is False

        assert pipeline.stats.dropped == 1
        assert pipeline.stats.reports == 2

        release.set()
        await pipeline.shutdown(drain_timeout=1.0)

        sent = [call.args[0] for call in client.send_batch.await_args_list]
        assert sent == [{"n": 1}, {"n": 2}]
        assert pipeline.stats.delivered == 2

    @pytest.mark.asyncio
    async def test_submit_before_start(self, collector, client):
        pipeline = make_pipeline(collector, client)
        with pytest.raises(RuntimeError):
            pipeline.submit({"n": 1})

    def test_rejects_zero_rate_limit(self, collector, client):
        with pytest.raises(ConfigurationError, match="rate_limit"):
            make_pipeline(collector, client, rate_limit=0)

    @pytest.mark.asyncio
    async def test_queue_size_follows_rate_limit(self, collector, client):
        release = asyncio.Event()

        async def blocked_send(snapshot):
            await release.wait()

        client.send_batch.side_effect = blocked_send
        pipeline = make_pipeline(collector, client, rate_limit=2)
        await pipeline.start()

        results = [pipeline.submit({"n": i}) for i in range(5)]

        assert results == [True, True, False, False, False]
        release.set()
        await pipeline.shutdown(drain_timeout=1.0)


class TestWorkers:
    """Tests for sender workers."""

    @pytest.mark.asyncio
    async def test_failures_are_counted(self, collector, client):
        client.send_batch.side_effect = RetryExhaustedError(4, ConnectionRefusedError("connection refused"))
        pipeline = make_pipeline(collector, client)
        await pipeline.start()

        pipeline.submit({"n": 1})
        await pipeline.shutdown(drain_timeout=1.0)

        assert pipeline.stats.failed == 1
        assert pipeline.stats.delivered == 0

    @pytest.mark.asyncio
    async def test_shutdown_cancels_after_drain_window(self, collector, client):
        async def never_finishes(snapshot):
            await asyncio.Event().wait()

        client.send_batch.side_effect = never_finishes
        pipeline = make_pipeline(collector, client)
        await pipeline.start()
        pipeline.submit({"n": 1})
        await asyncio.sleep(0)

        await asyncio.wait_for(pipeline.shutdown(drain_timeout=0.05), timeout=2.0)

        assert pipeline.is_running is False
        client.close.assert_awaited_once()


class TestLoops:
    """Tests for the poll and report loops."""

    @pytest.mark.asyncio
    async def test_loops_poll_and_report(self, collector, client):
        pipeline = make_pipeline(collector, client, poll_interval=0.01, report_interval=0.03)

        stop_event = asyncio.Event()
        run_task = asyncio.create_task(pipeline.run(stop_event))
        await asyncio.sleep(0.2)
        stop_event.set()
        await asyncio.wait_for(run_task, timeout=2.0)

        assert collector.refresh.call_count >= 2
        assert pipeline.stats.polls >= 2
        assert client.send_batch.await_count >= 1
        client.start.assert_awaited_once()
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_poll_errors_do_not_stop_loop(self, collector, client):
        collector.refresh.side_effect = RuntimeError("psutil failure")
        pipeline = make_pipeline(collector, client, poll_interval=0.01)

        await pipeline.start()
        await asyncio.sleep(0.1)
        await pipeline.shutdown(drain_timeout=0.1)

        assert collector.refresh.call_count >= 2
        assert pipeline.stats.polls == 0
