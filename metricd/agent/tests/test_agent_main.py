"""
metricd - Agent Application Tests
"""

import asyncio
from typing import Dict

import pytest
from unittest.mock import AsyncMock

from metricd.agent.main import MetricAgent
from metricd.agent.sources import MetricSource
from metricd.config import AgentSettings
from metricd.models import MetricKind
from metricd.storage import MemoryStorage


class ConstantSource(MetricSource):
    @property
    def name(self) -> str:
        return "constant"

    async def get_observable_metrics(self) -> Dict[str, MetricKind]:
        return {"Alloc": MetricKind.GAUGE}

    async def get_metric(self, name: str, kind: MetricKind) -> float:
        return 7.0


class FakeClient:
    def __init__(self):
        self.open = AsyncMock()
        self.close = AsyncMock()
        self.jobs = []

    async def worker(self, jobs, errors):
        while True:
            job = await jobs.get()
            self.jobs.append(job)
            jobs.task_done()


class TestMetricAgent:
    """Start and stop the whole agent."""

    @pytest.mark.asyncio
    async def test_collects_reports_and_stops(self):
        settings = AgentSettings(poll_interval=1, report_interval=1, worker_count=2)
        store = MemoryStorage()
        client = FakeClient()
        agent = MetricAgent(settings, sources=[ConstantSource()], store=store, client=client)

        # Speed the loops up for the test
        agent.collector._poll_interval = 0.01
        agent.sender._report_interval = 0.02

        runner = asyncio.create_task(agent.start())
        await asyncio.sleep(0.1)
        await agent.stop()
        await asyncio.wait_for(runner, timeout=5)

        assert not agent.running
        client.open.assert_awaited_once()
        client.close.assert_awaited_once()
        assert await store.get_metric(MetricKind.GAUGE, "Alloc") == "7"
        assert client.jobs
        assert ("Alloc", "7") in client.jobs[-1].gauges

    def test_server_url(self):
        assert AgentSettings(address="localhost:8080").server_url == "http://localhost:8080"
        assert AgentSettings(address="https://metrics.example.com/").server_url == "https://metrics.example.com"
