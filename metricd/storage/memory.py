"""
metricd - In-Memory Storage

Volatile store used by the agent and by a server running without a database.
"""

import asyncio
from typing import Dict, Tuple

from metricd.models import (
    MetricKind,
    add_counter,
    format_counter,
    format_gauge,
    parse_counter,
    parse_gauge,
)

from .base import FormattedPairs, MetricNotFound, MetricPairs, MetricStore


class MemoryStorage(MetricStore):
    """Dictionary-backed store; every mutation runs under one lock."""

    def __init__(self):
        self._gauges: Dict[str, float] = {}
        self._counters: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def update_gauge(self, name: str, value: float) -> None:
        value = parse_gauge(value)
        async with self._lock:
            self._gauges[name] = value

    async def update_counter(self, name: str, delta: int) -> None:
        delta = parse_counter(delta)
        async with self._lock:
            self._counters[name] = add_counter(name, self._counters.get(name, 0), delta)

    async def set_counter(self, name: str, value: int) -> None:
        value = parse_counter(value)
        async with self._lock:
            self._counters[name] = value

    async def update_batch(self, gauges: MetricPairs, counters: MetricPairs) -> None:
        # Parse everything before touching state so a bad entry changes nothing
        parsed_gauges = [(name, parse_gauge(value)) for name, value in gauges]
        parsed_counters = [(name, parse_counter(value)) for name, value in counters]

        async with self._lock:
            totals: Dict[str, int] = {}
            for name, delta in parsed_counters:
                current = totals.get(name, self._counters.get(name, 0))
                totals[name] = add_counter(name, current, delta)

            for name, value in parsed_gauges:
                self._gauges[name] = value
            self._counters.update(totals)

    async def get_metric(self, kind: MetricKind, name: str) -> str:
        async with self._lock:
            if kind == MetricKind.GAUGE and name in self._gauges:
                return format_gauge(self._gauges[name])
            if kind == MetricKind.COUNTER and name in self._counters:
                return format_counter(self._counters[name])
        raise MetricNotFound(kind, name)

    async def get_all_metrics(self) -> Tuple[FormattedPairs, FormattedPairs]:
        async with self._lock:
            gauges = [(name, format_gauge(value)) for name, value in self._gauges.items()]
            counters = [(name, format_counter(value)) for name, value in self._counters.items()]
        return gauges, counters
