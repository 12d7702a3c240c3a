"""
metricd - Delivery Client

Ships batches of metrics from the agent to the collector server.

Each batch is one JSON array POSTed to /updates/. The body is signed before
compression, and the POST is retried with the shared backoff table.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

import aiohttp
import structlog

from metricd.lib.compression import compress
from metricd.lib.retry import retry_async
from metricd.lib.signature import SIGNATURE_HEADER, sign
from metricd.models import Metric, ParseError
from metricd.storage.base import MetricPairs

logger = structlog.get_logger(__name__)

RETRYABLE = (aiohttp.ClientError, asyncio.TimeoutError)

DEFAULT_TIMEOUT = 10


class DeliveryError(Exception):
    """Every delivery attempt failed."""

    def __init__(self, cause: BaseException):
        super().__init__(f"delivery failed: {cause}")
        self.cause = cause


@dataclass
class DeliveryJob:
    """One batch waiting for a delivery worker."""
    gauges: MetricPairs = field(default_factory=list)
    counters: MetricPairs = field(default_factory=list)


def forward_error(errors: asyncio.Queue, error: BaseException) -> None:
    """Hand an error to the agent's error queue without blocking."""
    try:
        errors.put_nowait(error)
    except asyncio.QueueFull:
        logger.warning("Error queue full, dropping error", error=str(error))


class DeliveryClient:
    """HTTP client for the /updates/ endpoint."""

    def __init__(
        self,
        url: str,
        key: str = "",
        compress: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._url = url.rstrip("/") + "/updates/"
        self._key = key
        self._compress = compress
        self._sleep = sleep
        self._timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def url(self) -> str:
        return self._url

    async def open(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    @staticmethod
    def build_payload(gauges: MetricPairs, counters: MetricPairs) -> bytes:
        """
        Serialize one batch: gauges first, then counters.

        String values are parsed here, so a bad value raises ParseError
        before anything touches the network.
        """
        records: List[Any] = [Metric.gauge(name, value).to_dict() for name, value in gauges]
        records += [Metric.counter(name, delta).to_dict() for name, delta in counters]
        return json.dumps(records).encode("utf-8")

    async def send(self, gauges: MetricPairs, counters: MetricPairs) -> None:
        """Deliver one batch; raises DeliveryError once every attempt failed."""
        body = self.build_payload(gauges, counters)

        headers = {"Content-Type": "application/json"}
        if self._key:
            headers[SIGNATURE_HEADER] = sign(self._key, body)

        data = body
        if self._compress:
            data = compress(body)
            headers["Content-Encoding"] = "gzip"

        await self.open()

        async def _post() -> None:
            async with self._session.post(self._url, data=data, headers=headers) as response:
                response.raise_for_status()

        try:
            await retry_async(_post, RETRYABLE, sleep=self._sleep, op="agent.client.send")
        except RETRYABLE as e:
            logger.error("Delivery failed", url=self._url, error=str(e))
            raise DeliveryError(e) from e

        logger.debug("Batch delivered", gauges=len(gauges), counters=len(counters))

    async def worker(self, jobs: asyncio.Queue, errors: asyncio.Queue) -> None:
        """Deliver jobs from `jobs` until cancelled; failures go to `errors`."""
        while True:
            job: DeliveryJob = await jobs.get()
            try:
                await self.send(job.gauges, job.counters)
            except (DeliveryError, ParseError) as e:
                forward_error(errors, e)
            except Exception as e:
                logger.exception("Delivery worker error", error=str(e))
                forward_error(errors, e)
            finally:
                jobs.task_done()
