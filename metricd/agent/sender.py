"""
metricd - Report Scheduler

Every report interval reads the whole store and queues one delivery job for
the worker pool.
"""

import asyncio
from typing import List, Optional

import structlog

from metricd.storage import MetricStore, StorageError

from .client import DeliveryClient, DeliveryJob, forward_error

logger = structlog.get_logger(__name__)

# Jobs waiting per worker before new reports are dropped
QUEUE_DEPTH = 2


class ReportScheduler:
    """Periodic flush of the store to the delivery workers."""

    def __init__(
        self,
        store: MetricStore,
        client: DeliveryClient,
        report_interval: float,
        worker_count: int,
        errors: asyncio.Queue,
    ):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")

        self._store = store
        self._client = client
        self._report_interval = report_interval
        self._worker_count = worker_count
        self._errors = errors

        self._jobs: asyncio.Queue = asyncio.Queue(maxsize=worker_count * QUEUE_DEPTH)
        self._workers: List[asyncio.Task] = []
        self._report_task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> asyncio.Queue:
        return self._jobs

    async def start(self) -> None:
        """Start the delivery workers and the report task."""
        if self._running:
            return

        self._running = True
        for _ in range(self._worker_count):
            self._workers.append(
                asyncio.create_task(self._client.worker(self._jobs, self._errors))
            )
        self._report_task = asyncio.create_task(self._report_loop())

        logger.info(
            "Report scheduler started",
            interval=self._report_interval,
            workers=self._worker_count,
        )

    async def stop(self) -> None:
        """Stop reporting first so nothing is queued after shutdown, then the workers."""
        self._running = False

        if self._report_task:
            self._report_task.cancel()
            try:
                await self._report_task
            except asyncio.CancelledError:
                pass
            self._report_task = None

        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers.clear()

        logger.info("Report scheduler stopped")

    async def report(self) -> None:
        """
        Queue one job holding the current contents of the store.

        Never blocks: when every worker is busy and the queue is full, the
        job is dropped with a warning and the next tick sends fresh totals.
        """
        try:
            gauges, counters = await self._store.get_all_metrics()
        except StorageError as e:
            forward_error(self._errors, e)
            return

        if not self._running:
            return

        job = DeliveryJob(gauges=gauges, counters=counters)
        try:
            self._jobs.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning("Delivery queue full, dropping report", pending=self._jobs.qsize())

    async def _report_loop(self) -> None:
        """Run report() every report interval."""
        while self._running:
            await asyncio.sleep(self._report_interval)
            try:
                await self.report()
            except Exception as e:
                logger.exception("Report error", error=str(e))
