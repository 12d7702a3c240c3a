"""
metricd - Server Routers

Shared dependencies for the route modules.
"""

from fastapi import Request

from metricd.server.backup import BackupManager
from metricd.storage import MetricStore


def get_store(request: Request) -> MetricStore:
    return request.app.state.store


def get_backup(request: Request) -> BackupManager:
    return request.app.state.backup


async def after_write(backup: BackupManager) -> None:
    """In sync mode every successful write is persisted immediately."""
    if backup.is_sync_mode():
        await backup.backup()
