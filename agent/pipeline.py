"""
Agent - Collection Pipeline.

============================================================
PURPOSE
============================================================
Decouples the collection cadence from the network cadence.

    poll loop   --refresh()-->  collector
    report loop --snapshot()--> bounded queue --> N sender workers

============================================================
BACKPRESSURE
============================================================
The queue holds at most rate_limit snapshots. When it is full
the new snapshot is dropped with a warning; the report loop
never blocks and memory never grows. Snapshots are never
merged or reordered.

============================================================
SHUTDOWN
============================================================
1. Stop the poll and report loops
2. Let workers drain queued snapshots (bounded window)
3. Cancel whatever is still in flight
4. Close the delivery client

============================================================
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from agent.collector import RuntimeMetricsCollector
from agent.config import AgentConfig
from agent.sender import DeliveryClient
from core.exceptions import ConfigurationError
from core.models import Snapshot


logger = logging.getLogger(__name__)


@dataclass
class PipelineStats:
    """Counters describing pipeline activity."""
    polls: int = 0
    reports: int = 0
    dropped: int = 0
    delivered: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class CollectionPipeline:
    """
    Poll, report and send loops of the agent.

    ============================================================
    USAGE
    ============================================================
    pipeline = CollectionPipeline(config, collector, client)
    await pipeline.run(stop_event)

    ============================================================
    """

    def __init__(
        self,
        config: AgentConfig,
        collector: RuntimeMetricsCollector,
        client: DeliveryClient,
    ) -> None:
        if config.rate_limit < 1:
            raise ConfigurationError("rate_limit", config.rate_limit, "must be at least 1")

        self._config = config
        self._collector = collector
        self._client = client

        self._queue: Optional[asyncio.Queue] = None
        self._loops: List[asyncio.Task] = []
        self._workers: List[asyncio.Task] = []
        self._running = False

        self.stats = PipelineStats()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def queued(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    # =========================================================
    # LIFECYCLE
    # =========================================================

    async def start(self) -> None:
        """Start sender workers and the poll/report loops."""
        if self._running:
            return

        self._queue = asyncio.Queue(maxsize=self._config.rate_limit)
        await self._client.start()

        self._workers = [
            asyncio.create_task(self._worker(index), name=f"metrics-sender-{index}")
            for index in range(self._config.rate_limit)
        ]
        self._loops = [
            asyncio.create_task(self._poll_loop(), name="metrics-poll"),
            asyncio.create_task(self._report_loop(), name="metrics-report"),
        ]
        self._running = True

        logger.info(
            f"Agent pipeline started: poll={self._config.poll_interval}s, "
            f"report={self._config.report_interval}s, "
            f"rate_limit={self._config.rate_limit}"
        )

    async def shutdown(self, drain_timeout: Optional[float] = None) -> None:
        """
        Stop the loops, drain the queue, then stop the workers.

        Args:
            drain_timeout: Seconds to wait for queued snapshots
                (defaults to config.shutdown_timeout)
        """
        if not self._running:
            return
        self._running = False

        if drain_timeout is None:
            drain_timeout = self._config.shutdown_timeout

        await self._cancel(self._loops)
        self._loops = []

        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Drain window of {drain_timeout:g}s elapsed, "
                f"abandoning {self._queue.qsize()} queued snapshot(s)"
            )

        await self._cancel(self._workers)
        self._workers = []

        await self._client.close()
        logger.info(f"Agent pipeline stopped: {self.stats.to_dict()}")

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run until stop_event is set, then shut down."""
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.shutdown()

    @staticmethod
    async def _cancel(tasks: List[asyncio.Task]) -> None:
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Pipeline task ended with error: {result}")

    # =========================================================
    # LOOPS
    # =========================================================

    async def _poll_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self._config.poll_interval)
            try:
                # refresh() takes a threading lock and may block on psutil
                await loop.run_in_executor(None, self._collector.refresh)
                self.stats.polls += 1
            except Exception as e:
                logger.error(f"Metrics poll failed: {e}")

    async def _report_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.report_interval)
            try:
                self.submit(self._collector.snapshot())
            except Exception as e:
                logger.error(f"Metrics report failed: {e}")

    # =========================================================
    # QUEUE
    # =========================================================

    def submit(self, snapshot: Snapshot) -> bool:
        """
        Offer a snapshot to the senders without blocking.

        Returns:
            True if queued, False if dropped because the queue is full
        """
        if self._queue is None:
            raise RuntimeError("Pipeline is not started")

        try:
            self._queue.put_nowait(snapshot)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning("Rate limit exceeded, skipping metrics send")
            return False

        self.stats.reports += 1
        return True

    async def _worker(self, index: int) -> None:
        while True:
            snapshot: Any = await self._queue.get()
            try:
                await self._client.send_batch(snapshot)
                self.stats.delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.failed += 1
                logger.error(f"Sender {index}: failed to send metrics batch: {e}")
            finally:
                self._queue.task_done()
