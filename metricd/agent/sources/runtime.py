"""
metricd - Runtime Metric Source

Metrics about the agent process itself: memory, threads, CPU and the
garbage collector.
"""

import gc
from typing import Callable, Dict, Optional

import psutil

from metricd.models import MetricKind

from .base import MetricSource, MetricSourceError


class RuntimeSource(MetricSource):
    """Python process metrics."""

    def __init__(self, process: Optional[psutil.Process] = None):
        self._process = process or psutil.Process()
        self._readers: Dict[str, Callable[[], float]] = {
            "ProcessRSS": lambda: self._process.memory_info().rss,
            "ProcessVMS": lambda: self._process.memory_info().vms,
            "ProcessThreads": lambda: self._process.num_threads(),
            "ProcessCPUPercent": lambda: self._process.cpu_percent(interval=None),
            "GCCollected": lambda: sum(s["collected"] for s in gc.get_stats()),
            "GCUncollectable": lambda: sum(s["uncollectable"] for s in gc.get_stats()),
        }
        for generation in range(3):
            self._readers[f"GCCollections{generation}"] = self._gen_stat(generation, "collections")
            self._readers[f"GCPending{generation}"] = self._gen_count(generation)

    @staticmethod
    def _gen_stat(generation: int, key: str) -> Callable[[], float]:
        return lambda: gc.get_stats()[generation][key]

    @staticmethod
    def _gen_count(generation: int) -> Callable[[], float]:
        return lambda: gc.get_count()[generation]

    @property
    def name(self) -> str:
        return "runtime"

    async def get_observable_metrics(self) -> Dict[str, MetricKind]:
        return {name: MetricKind.GAUGE for name in self._readers}

    async def get_metric(self, name: str, kind: MetricKind) -> float:
        reader = self._readers.get(name)
        if reader is None:
            raise MetricSourceError(f"unknown runtime metric: {name}")
        try:
            return float(reader())
        except psutil.Error as e:
            raise MetricSourceError(f"failed to read {name}: {e}") from e
