"""
metricd - SQL Storage

Persistent store backed by a single `metric` table in SQLite.

Gauge and counter values for the same name share one row. Every operation
runs under the store lock and is retried with the fixed backoff table before
StorageUnavailable is raised.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

import aiosqlite
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

SCHEMA = """
    CREATE TABLE IF NOT EXISTS metric (
        name TEXT PRIMARY KEY,
        gauge DOUBLE PRECISION NOT NULL DEFAULT 0,
        counter BIGINT NOT NULL DEFAULT 0
    )
"""

UPSERT_GAUGE = """
    INSERT INTO metric (name, gauge) VALUES (?, ?)
    ON CONFLICT (name) DO UPDATE SET gauge = excluded.gauge
"""

# Single statement increment, no read-then-write. The WHERE clause leaves the
# row untouched when the sum would leave the int64 range.
UPSERT_COUNTER = """
    INSERT INTO metric (name, counter) VALUES (?, ?)
    ON CONFLICT (name) DO UPDATE SET counter = counter + excluded.counter
    WHERE CASE WHEN excluded.counter >= 0
        THEN counter <= ? - excluded.counter
        ELSE counter >= ? - excluded.counter
    END
"""

SET_COUNTER = """
    INSERT INTO metric (name, counter) VALUES (?, ?)
    ON CONFLICT (name) DO UPDATE SET counter = excluded.counter
"""

RETRYABLE = (aiosqlite.Error,)

SQLITE_PREFIXES = ("sqlite:///", "sqlite://")


def database_path(dsn: str) -> str:
    """Turn a DSN into a path aiosqlite can open."""
    for prefix in SQLITE_PREFIXES:
        if dsn.startswith(prefix):
            return dsn[len(prefix):] or ":memory:"
    if "://" in dsn:
        raise ValueError(f"Unsupported database DSN: {dsn}")
    return dsn


class SQLStorage(MetricStore):
    """SQLite-backed metric store."""

    def __init__(
        self,
        db: aiosqlite.Connection,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._db = db
        self._sleep = sleep
        self._lock = asyncio.Lock()

    @classmethod
    async def connect(
        cls,
        dsn: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "SQLStorage":
        """Open the database and create the metric table if absent."""
        path = database_path(dsn)
        op = "storage.sql.connect"

        async def _open() -> aiosqlite.Connection:
            # Autocommit; batches manage their own transaction
            db = await aiosqlite.connect(path, isolation_level=None)
            try:
                if path != ":memory:":
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.execute("PRAGMA synchronous=NORMAL")
                await db.execute(SCHEMA)
            except aiosqlite.Error:
                await db.close()
                raise
            return db

        try:
            db = await retry_async(_open, RETRYABLE, sleep=sleep, op=op)
        except RETRYABLE as e:
            raise StorageUnavailable(op, e) from e

        logger.info("Metric database initialized", path=path)
        return cls(db, sleep=sleep)

    async def _run(self, op: str, action: Callable[[], Awaitable[T]]) -> T:
        """Run `action` under the lock with retries."""
        async def _locked() -> T:
            async with self._lock:
                return await action()

        try:
            return await retry_async(_locked, RETRYABLE, sleep=self._sleep, op=op)
        except RETRYABLE as e:
            logger.error("Storage operation failed", op=op, error=str(e))
            raise StorageUnavailable(op, e) from e

    async def ping(self) -> None:
        async def _ping():
            await self._db.execute("SELECT 1")

        await self._run("storage.sql.ping", _ping)

    async def close(self) -> None:
        await self._db.close()
        logger.info("Metric database closed")

    async def update_gauge(self, name: str, value: float) -> None:
        value = parse_gauge(value)

        async def _update():
            await self._db.execute(UPSERT_GAUGE, (name, value))

        await self._run("storage.sql.update_gauge", _update)

    async def _add_counter(self, name: str, delta: int) -> None:
        cursor = await self._db.execute(UPSERT_COUNTER, (name, delta, INT64_MAX, INT64_MIN))
        if cursor.rowcount == 0:
            raise ParseError(f"counter {name!r} would overflow int64 adding {delta}")

    async def update_counter(self, name: str, delta: int) -> None:
        delta = parse_counter(delta)
        await self._run("storage.sql.update_counter", lambda: self._add_counter(name, delta))

    async def set_counter(self, name: str, value: int) -> None:
        value = parse_counter(value)

        async def _set():
            await self._db.execute(SET_COUNTER, (name, value))

        await self._run("storage.sql.set_counter", _set)

    async def update_batch(self, gauges: MetricPairs, counters: MetricPairs) -> None:
        async def _update():
            await self._db.execute("BEGIN")
            try:
                for name, value in gauges:
                    await self._db.execute(UPSERT_GAUGE, (name, parse_gauge(value)))
                for name, delta in counters:
                    await self._add_counter(name, parse_counter(delta))
                await self._db.execute("COMMIT")
            except BaseException:
                # A failed COMMIT may have already ended the transaction
                if self._db.in_transaction:
                    await self._db.execute("ROLLBACK")
                raise

        await self._run("storage.sql.update_batch", _update)

    async def _fetch_row(self, name: str) -> Optional[Tuple[Any, ...]]:
        async with self._db.execute(
            "SELECT gauge, counter FROM metric WHERE name = ?", (name,)
        ) as cursor:
            return await cursor.fetchone()

    async def get_metric(self, kind: MetricKind, name: str) -> str:
        row = await self._run("storage.sql.get_metric", lambda: self._fetch_row(name))
        if row is None:
            raise MetricNotFound(kind, name)

        gauge, counter = row
        if kind == MetricKind.GAUGE:
            return format_gauge(gauge)
        return format_counter(counter)

    async def get_all_metrics(self) -> Tuple[FormattedPairs, FormattedPairs]:
        async def _fetch_all():
            async with self._db.execute(
                "SELECT name, gauge, counter FROM metric ORDER BY name"
            ) as cursor:
                return await cursor.fetchall()

        rows = await self._run("storage.sql.get_all_metrics", _fetch_all)

        gauges: FormattedPairs = []
        counters: FormattedPairs = []
        for name, gauge, counter in rows:
            # A shared row only reports the kinds that were written
            if gauge != 0:
                gauges.append((name, format_gauge(gauge)))
            if counter != 0:
                counters.append((name, format_counter(counter)))
        return gauges, counters
