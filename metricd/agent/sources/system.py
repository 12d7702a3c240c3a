"""
metricd - System Metric Source

Host memory totals and per-core CPU utilisation read with psutil.
"""

import asyncio
from typing import Dict, List

import psutil

from metricd.models import MetricKind

from .base import MetricSource, MetricSourceError

CPU_PREFIX = "CPUutilization"


class SystemSource(MetricSource):
    """Operating system metrics."""

    def __init__(self, cpu_sample_interval: float = 0.1):
        self._cpu_sample_interval = cpu_sample_interval
        self._cores = psutil.cpu_count(logical=False) or psutil.cpu_count() or 1

    @property
    def name(self) -> str:
        return "system"

    async def get_observable_metrics(self) -> Dict[str, MetricKind]:
        names = {
            "TotalMemory": MetricKind.GAUGE,
            "FreeMemory": MetricKind.GAUGE,
        }
        for i in range(1, self._cores + 1):
            names[f"{CPU_PREFIX}{i}"] = MetricKind.GAUGE
        return names

    async def get_metric(self, name: str, kind: MetricKind) -> float:
        if name == "TotalMemory":
            return float(psutil.virtual_memory().total)
        if name == "FreeMemory":
            return float(psutil.virtual_memory().free)
        if name.startswith(CPU_PREFIX):
            return await self._cpu_utilization(name)
        raise MetricSourceError(f"unknown system metric: {name}")

    async def _cpu_utilization(self, name: str) -> float:
        try:
            index = int(name[len(CPU_PREFIX):]) - 1
        except ValueError:
            raise MetricSourceError(f"unknown system metric: {name}") from None

        percents = await self._cpu_percents()
        if not 0 <= index < len(percents):
            raise MetricSourceError(f"no such CPU: {name}")
        return float(percents[index])

    async def _cpu_percents(self) -> List[float]:
        # psutil blocks for the sample interval
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: psutil.cpu_percent(interval=self._cpu_sample_interval, percpu=True),
        )
