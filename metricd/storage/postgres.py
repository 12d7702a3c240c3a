"""
metricd - PostgreSQL Storage

Same `metric` table and semantics as the SQLite store, reached through
asyncpg. Used when DATABASE_DSN is a postgres:// or postgresql:// URL.
"""

import asyncio
from typing import Awaitable, Callable, Tuple, TypeVar

import asyncpg
import structlog

from metricd.lib.retry import retry_async
from metricd.models import (
    INT64_MAX,
    INT64_MIN,
    MetricKind,
    ParseError,
    format_counter,
    format_gauge,
    parse_counter,
    parse_gauge,
)

from .base import (
    FormattedPairs,
    MetricNotFound,
    MetricPairs,
    MetricStore,
    StorageUnavailable,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

POSTGRES_PREFIXES = ("postgres://", "postgresql://")

SCHEMA = """
    CREATE TABLE IF NOT EXISTS metric (
        name TEXT PRIMARY KEY,
        gauge DOUBLE PRECISION NOT NULL DEFAULT 0,
        counter BIGINT NOT NULL DEFAULT 0
    )
"""

UPSERT_GAUGE = """
    INSERT INTO metric (name, gauge) VALUES ($1, $2)
    ON CONFLICT (name) DO UPDATE SET gauge = EXCLUDED.gauge
"""

UPSERT_COUNTER = """
    INSERT INTO metric (name, counter) VALUES ($1, $2)
    ON CONFLICT (name) DO UPDATE SET counter = metric.counter + EXCLUDED.counter
    WHERE CASE WHEN EXCLUDED.counter >= 0
        THEN metric.counter <= $3 - EXCLUDED.counter
        ELSE metric.counter >= $4 - EXCLUDED.counter
    END
"""

SET_COUNTER = """
    INSERT INTO metric (name, counter) VALUES ($1, $2)
    ON CONFLICT (name) DO UPDATE SET counter = EXCLUDED.counter
"""

RETRYABLE = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


def is_postgres_dsn(dsn: str) -> bool:
    return dsn.startswith(POSTGRES_PREFIXES)


def normalize_dsn(dsn: str) -> str:
    """asyncpg expects the postgresql:// scheme."""
    if dsn.startswith("postgres://"):
        return dsn.replace("postgres://", "postgresql://", 1)
    return dsn


def rows_affected(status: str) -> int:
    """Row count from a command tag such as "INSERT 0 1"."""
    try:
        return int(status.split()[-1])
    except (IndexError, ValueError):
        return 0


class PostgresStorage(MetricStore):
    """PostgreSQL-backed metric store on a single connection."""

    def __init__(
        self,
        db: asyncpg.Connection,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._db = db
        self._sleep = sleep
        # One connection cannot run two queries at once
        self._lock = asyncio.Lock()

    @classmethod
    async def connect(
        cls,
        dsn: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "PostgresStorage":
        """Connect and create the metric table if absent."""
        url = normalize_dsn(dsn)
        op = "storage.postgres.connect"

        async def _open() -> asyncpg.Connection:
            db = await asyncpg.connect(url)
            try:
                await db.execute(SCHEMA)
            except RETRYABLE:
                await db.close()
                raise
            return db

        try:
            db = await retry_async(_open, RETRYABLE, sleep=sleep, op=op)
        except RETRYABLE as e:
            raise StorageUnavailable(op, e) from e

        logger.info("Metric database initialized", backend="postgres")
        return cls(db, sleep=sleep)

    async def _run(self, op: str, action: Callable[[], Awaitable[T]]) -> T:
        async def _locked() -> T:
            async with self._lock:
                return await action()

        try:
            return await retry_async(_locked, RETRYABLE, sleep=self._sleep, op=op)
        except RETRYABLE as e:
            logger.error("Storage operation failed", op=op, error=str(e))
            raise StorageUnavailable(op, e) from e

    async def ping(self) -> None:
        await self._run("storage.postgres.ping", lambda: self._db.execute("SELECT 1"))

    async def close(self) -> None:
        await self._db.close()
        logger.info("Metric database closed")

    async def update_gauge(self, name: str, value: float) -> None:
        value = parse_gauge(value)
        await self._run(
            "storage.postgres.update_gauge",
            lambda: self._db.execute(UPSERT_GAUGE, name, value),
        )

    async def _add_counter(self, name: str, delta: int) -> None:
        status = await self._db.execute(UPSERT_COUNTER, name, delta, INT64_MAX, INT64_MIN)
        if rows_affected(status) == 0:
            raise ParseError(f"counter {name!r} would overflow int64 adding {delta}")

    async def update_counter(self, name: str, delta: int) -> None:
        delta = parse_counter(delta)
        await self._run("storage.postgres.update_counter", lambda: self._add_counter(name, delta))

    async def set_counter(self, name: str, value: int) -> None:
        value = parse_counter(value)
        await self._run(
            "storage.postgres.set_counter",
            lambda: self._db.execute(SET_COUNTER, name, value),
        )

    async def update_batch(self, gauges: MetricPairs, counters: MetricPairs) -> None:
        async def _update():
            async with self._db.transaction():
                for name, value in gauges:
                    await self._db.execute(UPSERT_GAUGE, name, parse_gauge(value))
                for name, delta in counters:
                    await self._add_counter(name, parse_counter(delta))

        await self._run("storage.postgres.update_batch", _update)

    async def get_metric(self, kind: MetricKind, name: str) -> str:
        row = await self._run(
            "storage.postgres.get_metric",
            lambda: self._db.fetchrow("SELECT gauge, counter FROM metric WHERE name = $1", name),
        )
        if row is None:
            raise MetricNotFound(kind, name)

        if kind == MetricKind.GAUGE:
            return format_gauge(row["gauge"])
        return format_counter(row["counter"])

    async def get_all_metrics(self) -> Tuple[FormattedPairs, FormattedPairs]:
        rows = await self._run(
            "storage.postgres.get_all_metrics",
            lambda: self._db.fetch("SELECT name, gauge, counter FROM metric ORDER BY name"),
        )

        gauges: FormattedPairs = []
        counters: FormattedPairs = []
        for row in rows:
            if row["gauge"] != 0:
                gauges.append((row["name"], format_gauge(row["gauge"])))
            if row["counter"] != 0:
                counters.append((row["name"], format_counter(row["counter"])))
        return gauges, counters
