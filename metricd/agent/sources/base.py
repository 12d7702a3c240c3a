"""
metricd - Base Metric Source

Every source the agent polls implements this interface.
"""

from abc import ABC, abstractmethod
from typing import Dict

from metricd.models import MetricKind


class MetricSourceError(Exception):
    """A source could not produce a metric."""


class MetricSource(ABC):
    """A set of observable metrics read on every poll."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Source identifier used in logs."""

    @abstractmethod
    async def get_observable_metrics(self) -> Dict[str, MetricKind]:
        """Names this source can read, mapped to their kind."""

    @abstractmethod
    async def get_metric(self, name: str, kind: MetricKind) -> float:
        """
        Read the current value of one metric.

        Raises MetricSourceError when the name is unknown or the read fails.
        """
