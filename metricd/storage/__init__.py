"""
metricd - Storage Package

Interchangeable metric stores:
- MemoryStorage: volatile, dictionary backed
- SQLStorage: persistent, one SQLite table
- PostgresStorage: persistent, the same table in PostgreSQL
"""

from .base import (
    MetricStore,
    StorageError,
    MetricNotFound,
    StorageUnavailable,
)
from .memory import MemoryStorage
from .postgres import PostgresStorage, is_postgres_dsn
from .sql import SQLStorage


async def open_storage(dsn: str = "") -> MetricStore:
    """Return the SQL store `dsn` names, or a memory store when it is empty."""
    if not dsn:
        return MemoryStorage()
    if is_postgres_dsn(dsn):
        return await PostgresStorage.connect(dsn)
    return await SQLStorage.connect(dsn)


__all__ = [
    "MetricStore",
    "StorageError",
    "MetricNotFound",
    "StorageUnavailable",
    "MemoryStorage",
    "PostgresStorage",
    "SQLStorage",
    "open_storage",
]
