"""
metricd - Agent

Samples system and runtime metrics and reports them to the collector server:
- CollectionScheduler polls the sources into a local memory store
- ReportScheduler flushes the store to the delivery workers
- Errors from every component are drained into the log

Usage:
    metricd-agent [-c CONFIG] [-a ADDRESS] [-p POLL] [-r REPORT] [-l WORKERS] [-k KEY]
"""

import asyncio
import signal
import sys
from typing import List, Optional, Sequence

import structlog

from metricd import __version__
from metricd.config import AgentSettings, load_agent_settings
from metricd.lib.logger import configure_logging
from metricd.storage import MemoryStorage, MetricStore

from .client import DeliveryClient
from .collector import CollectionScheduler
from .sender import ReportScheduler
from .sources import MetricSource, RuntimeSource, SystemSource

logger = structlog.get_logger(__name__)

# Seconds allowed for components to stop
GRACE_PERIOD = 3

ERROR_QUEUE_SIZE = 100


class MetricAgent:
    """Main agent application."""

    def __init__(
        self,
        settings: AgentSettings,
        sources: Optional[Sequence[MetricSource]] = None,
        store: Optional[MetricStore] = None,
        client: Optional[DeliveryClient] = None,
    ):
        self.settings = settings
        self.running = False
        self._shutdown_event = asyncio.Event()
        self._error_task: Optional[asyncio.Task] = None

        self.errors: asyncio.Queue = asyncio.Queue(maxsize=ERROR_QUEUE_SIZE)
        self.store = store if store is not None else MemoryStorage()
        self.client = client or DeliveryClient(settings.server_url, key=settings.key)

        if sources is None:
            sources = [SystemSource(), RuntimeSource()]
        self.collector = CollectionScheduler(
            self.store, sources, settings.poll_interval, self.errors
        )
        self.sender = ReportScheduler(
            self.store,
            self.client,
            settings.report_interval,
            settings.worker_count,
            self.errors,
        )

    async def _error_loop(self) -> None:
        """Log every error the components report."""
        while True:
            error = await self.errors.get()
            logger.error("Agent error", error=str(error), type=type(error).__name__)

    async def start(self) -> None:
        """Start the agent and run until stopped."""
        logger.info(
            "Starting metricd agent",
            version=__version__,
            server=self.settings.server_url,
            poll_interval=self.settings.poll_interval,
            report_interval=self.settings.report_interval,
            workers=self.settings.worker_count,
        )
        self.running = True

        self._error_task = asyncio.create_task(self._error_loop())
        await self.client.open()
        await self.collector.start()
        await self.sender.start()

        logger.info("metricd agent started")

        # Wait for shutdown signal
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the agent gracefully."""
        if not self.running:
            return

        logger.info("Stopping metricd agent")
        self.running = False

        try:
            await asyncio.wait_for(self._stop_components(), timeout=GRACE_PERIOD)
        except asyncio.TimeoutError:
            logger.warning("Agent shutdown timed out", grace_period=GRACE_PERIOD)

        self._shutdown_event.set()
        logger.info("metricd agent stopped")

    async def _stop_components(self) -> None:
        await self.collector.stop()
        await self.sender.stop()
        await self.client.close()

        if self._error_task:
            # Log what is still queued before leaving
            while not self.errors.empty():
                await asyncio.sleep(0)
            self._error_task.cancel()
            try:
                await self._error_task
            except asyncio.CancelledError:
                pass
            self._error_task = None

    def handle_signal(self, signum: int) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal", signal=signum)
        asyncio.create_task(self.stop())


async def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    settings = load_agent_settings(argv)
    configure_logging(settings.log_level)

    agent = MetricAgent(settings)

    # Register signal handlers
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, agent.handle_signal, signum)

    try:
        await agent.start()
    except Exception as e:
        logger.exception("Agent failed", error=str(e))
        sys.exit(1)


def run() -> None:
    """Console entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
