"""
metricd - Backup Manager

Snapshots the metric store to a JSON file and replays it on startup.

Two modes:
- Sync mode (store interval 0): write handlers call backup() after every write
- Periodic mode: a background task runs backup() every store interval

A final backup always runs on stop().
"""

import asyncio
import json
from enum import Enum
from pathlib import Path
from typing import List, Optional

import aiofiles
import structlog
from pydantic import ValidationError

from metricd.models import Metric, MetricKind, parse_value
from metricd.storage import MetricStore, StorageError

logger = structlog.get_logger(__name__)

BACKUP_INDENT = 2


class BackupState(str, Enum):
    """Where the manager is in its snapshot cycle."""
    IDLE = "idle"
    RESTORING = "restoring"
    SNAPSHOTTING = "snapshotting"
    PERSISTED = "persisted"


class BackupManager:
    """Keeps a file copy of the store."""

    def __init__(self, store: MetricStore, store_interval: float, path: str):
        self._store = store
        self._store_interval = store_interval
        self._path = Path(path)
        self._snapshot: List[Metric] = []
        self._lock = asyncio.Lock()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.state = BackupState.IDLE

    @property
    def path(self) -> Path:
        return self._path

    @property
    def snapshot(self) -> List[Metric]:
        """Copy of the in-memory snapshot."""
        return [metric.model_copy() for metric in self._snapshot]

    @property
    def is_running(self) -> bool:
        return self._running

    def is_sync_mode(self) -> bool:
        return self._store_interval == 0

    def save_to_struct(self, kind: MetricKind, name: str, value: str) -> None:
        """
        Record one metric in the snapshot.

        Replaces the record with the same name and kind, or appends a new one.
        Raises ParseError if `value` is not valid for `kind`.
        """
        parsed = parse_value(kind, value)
        if kind == MetricKind.GAUGE:
            metric = Metric(id=name, type=kind, value=parsed)
        else:
            metric = Metric(id=name, type=kind, delta=parsed)

        for i, existing in enumerate(self._snapshot):
            if existing.id == name and existing.type == kind:
                self._snapshot[i] = metric
                return

        self._snapshot.append(metric)

    async def save_to_file(self) -> None:
        """Overwrite the backup file with the snapshot. Failures are logged."""
        data = json.dumps(
            [metric.to_dict() for metric in self._snapshot],
            indent=BACKUP_INDENT,
        )
        try:
            async with aiofiles.open(self._path, "w") as f:
                await f.write(data)
        except OSError as e:
            logger.error("Failed to write backup file", path=str(self._path), error=str(e))
            return

        logger.debug("Backup file saved", path=str(self._path), count=len(self._snapshot))

    async def restore(self) -> None:
        """Load the backup file and replay it into the store."""
        self.state = BackupState.RESTORING
        try:
            await self._restore()
        finally:
            self.state = BackupState.IDLE

    async def _restore(self) -> None:
        logger.info("Restoring metrics", path=str(self._path))

        try:
            async with aiofiles.open(self._path, "r") as f:
                data = await f.read()
        except FileNotFoundError:
            logger.warning("Backup file not found, starting empty", path=str(self._path))
            return
        except OSError as e:
            logger.error("Failed to read backup file", path=str(self._path), error=str(e))
            return

        try:
            records = json.loads(data) if data.strip() else []
            if not isinstance(records, list):
                raise ValueError("backup file must contain a JSON array")
            snapshot = [Metric.model_validate(record) for record in records]
        except (ValueError, ValidationError) as e:
            logger.error("Failed to decode backup file", path=str(self._path), error=str(e))
            return

        self._snapshot = snapshot

        restored = 0
        for metric in snapshot:
            try:
                if metric.type == MetricKind.GAUGE:
                    await self._store.update_gauge(metric.id, metric.value)
                else:
                    # Sets the total; a persistent store may already hold it
                    await self._store.set_counter(metric.id, metric.delta)
                restored += 1
            except StorageError as e:
                logger.error("Failed to restore metric", name=metric.id, type=metric.type.value, error=str(e))

        logger.info("Metrics restored", count=restored)

    async def backup(self) -> None:
        """Rebuild the snapshot from the store and write it to the file."""
        async with self._lock:
            self.state = BackupState.SNAPSHOTTING
            try:
                try:
                    gauges, counters = await self._store.get_all_metrics()
                except StorageError as e:
                    logger.error("Failed to read metrics for backup", error=str(e))
                    return

                for kind, metrics in ((MetricKind.GAUGE, gauges), (MetricKind.COUNTER, counters)):
                    for name, value in metrics:
                        if not name or not value:
                            continue
                        try:
                            self.save_to_struct(kind, name, value)
                        except ValueError as e:
                            logger.error("Failed to snapshot metric", name=name, type=kind.value, error=str(e))

                await self.save_to_file()
                self.state = BackupState.PERSISTED
            finally:
                self.state = BackupState.IDLE

    async def start(self) -> None:
        """Start the periodic backup task; does nothing in sync mode."""
        if self._running or self.is_sync_mode():
            return

        self._running = True
        self._task = asyncio.create_task(self._backup_loop())
        logger.info("Backup scheduler started", interval=self._store_interval, path=str(self._path))

    async def stop(self) -> None:
        """Stop the periodic task and write a final backup."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self.backup()
        logger.info("Backup scheduler stopped")

    async def _backup_loop(self) -> None:
        """Run backup() every store interval."""
        while self._running:
            await asyncio.sleep(self._store_interval)
            try:
                await self.backup()
            except Exception as e:
                logger.exception("Backup error", error=str(e))
