"""
metricd - Collection Scheduler

Polls every metric source into the agent's store, one task per source, plus
a liveness task that bumps PollCount and RandomValue on the same cadence.
"""

import asyncio
import random
from typing import Callable, Dict, List, Sequence

import structlog

from metricd.models import MetricKind
from metricd.storage import MetricStore, StorageError

from .client import forward_error
from .sources import MetricSource, MetricSourceError

logger = structlog.get_logger(__name__)

POLL_COUNT = "PollCount"
RANDOM_VALUE = "RandomValue"


class CollectionScheduler:
    """Periodic polling of metric sources."""

    def __init__(
        self,
        store: MetricStore,
        sources: Sequence[MetricSource],
        poll_interval: float,
        errors: asyncio.Queue,
        rng: Callable[[], float] = random.random,
    ):
        self._store = store
        self._sources = list(sources)
        self._poll_interval = poll_interval
        self._errors = errors
        self._rng = rng

        self._tasks: List[asyncio.Task] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def discover(self, source: MetricSource) -> Dict[str, MetricKind]:
        """Names a source exposes; a failure yields none and is reported."""
        try:
            names = await source.get_observable_metrics()
        except Exception as e:
            logger.error("Metric discovery failed", source=source.name, error=str(e))
            forward_error(self._errors, e)
            return {}

        logger.info("Metrics discovered", source=source.name, count=len(names))
        return names

    async def start(self) -> None:
        """Discover every source once, then start the polling tasks."""
        if self._running:
            return

        self._running = True
        for source in self._sources:
            names = await self.discover(source)
            self._tasks.append(asyncio.create_task(self._source_loop(source, names)))
        self._tasks.append(asyncio.create_task(self._liveness_loop()))

        logger.info(
            "Collection scheduler started",
            interval=self._poll_interval,
            sources=[source.name for source in self._sources],
        )

    async def stop(self) -> None:
        """Cancel every polling task."""
        self._running = False

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

        logger.info("Collection scheduler stopped")

    async def poll_source(self, source: MetricSource, names: Dict[str, MetricKind]) -> None:
        """Read every named metric once; one failure does not stop the rest."""
        for name, kind in names.items():
            try:
                value = await source.get_metric(name, kind)
                await self._store.update_gauge(name, value)
            except (MetricSourceError, StorageError, ValueError) as e:
                logger.debug("Metric poll failed", source=source.name, name=name, error=str(e))
                forward_error(self._errors, e)

    async def poll_liveness(self) -> None:
        try:
            await self._store.update_gauge(RANDOM_VALUE, self._rng())
            await self._store.update_counter(POLL_COUNT, 1)
        except (StorageError, ValueError) as e:
            forward_error(self._errors, e)

    async def _source_loop(self, source: MetricSource, names: Dict[str, MetricKind]) -> None:
        while self._running:
            try:
                await self.poll_source(source, names)
            except Exception as e:
                logger.exception("Collection error", source=source.name, error=str(e))

            await asyncio.sleep(self._poll_interval)

    async def _liveness_loop(self) -> None:
        while self._running:
            try:
                await self.poll_liveness()
            except Exception as e:
                logger.exception("Liveness poll error", error=str(e))

            await asyncio.sleep(self._poll_interval)
