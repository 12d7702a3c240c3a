"""
metricd - Metric Store Interface

All storage backends implement this interface so the server handlers, the
agent schedulers and the backup manager can work with either of them.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Sequence, Tuple

from metricd.models import MetricKind

# (name, value) pairs; values are numbers or their string form
MetricPairs = Sequence[Tuple[str, Any]]

# (name, formatted value) pairs as returned by reads
FormattedPairs = List[Tuple[str, str]]


class StorageError(Exception):
    """Base class for storage failures."""


class MetricNotFound(StorageError):
    """The requested metric does not exist."""

    def __init__(self, kind: MetricKind, name: str):
        super().__init__(f"{kind.value} metric {name!r} not found")
        self.kind = kind
        self.name = name


class StorageUnavailable(StorageError):
    """The backend kept failing after every retry."""

    def __init__(self, op: str, cause: BaseException):
        super().__init__(f"{op}: {cause}")
        self.op = op
        self.cause = cause


class MetricStore(ABC):
    """Current value of every gauge and counter."""

    @abstractmethod
    async def update_gauge(self, name: str, value: float) -> None:
        """Replace the gauge value."""

    @abstractmethod
    async def update_counter(self, name: str, delta: int) -> None:
        """
        Add `delta` to the counter, starting from 0.

        Raises ParseError, leaving the counter unchanged, when the total
        would leave the int64 range.
        """

    @abstractmethod
    async def set_counter(self, name: str, value: int) -> None:
        """Replace the counter total; used when restoring a backup."""

    @abstractmethod
    async def update_batch(self, gauges: MetricPairs, counters: MetricPairs) -> None:
        """
        Apply every gauge as an overwrite and every counter as an increment.

        Either all updates are applied or none are; a value that fails to parse
        raises ParseError and leaves the store untouched.
        """

    @abstractmethod
    async def get_metric(self, kind: MetricKind, name: str) -> str:
        """Formatted value of one metric; raises MetricNotFound."""

    @abstractmethod
    async def get_all_metrics(self) -> Tuple[FormattedPairs, FormattedPairs]:
        """All gauges and all counters as (name, formatted value) lists."""

    async def ping(self) -> None:
        """Raise StorageError if the backend cannot be reached."""

    async def close(self) -> None:
        """Release backend resources."""
