"""
metricd - Update Router

Write endpoints: text update, single JSON update, JSON batch update.
"""

from typing import List

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse

from metricd.models import Metric, MetricKind, parse_counter, parse_kind, parse_value
from metricd.server.backup import BackupManager
from metricd.storage import MetricStore

from . import after_write, get_backup, get_store

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/update/{kind}/{name}/{value}", response_class=PlainTextResponse)
async def update_metric(
    kind: str,
    name: str,
    value: str,
    store: MetricStore = Depends(get_store),
    backup: BackupManager = Depends(get_backup),
):
    """Update one metric from path parameters."""
    metric_kind = parse_kind(kind)
    parsed = parse_value(metric_kind, value)

    if metric_kind == MetricKind.GAUGE:
        await store.update_gauge(name, parsed)
    else:
        await store.update_counter(name, parsed)

    await after_write(backup)
    return "OK"


@router.post("/update/")
async def update_metric_json(
    metric: Metric,
    store: MetricStore = Depends(get_store),
    backup: BackupManager = Depends(get_backup),
):
    """Update one metric from a JSON record. Counters answer with their new total."""
    if metric.type == MetricKind.GAUGE:
        await store.update_gauge(metric.id, metric.value)
        result = metric
    else:
        await store.update_counter(metric.id, metric.delta)
        total = await store.get_metric(MetricKind.COUNTER, metric.id)
        result = Metric(id=metric.id, type=MetricKind.COUNTER, delta=parse_counter(total))

    await after_write(backup)
    return JSONResponse(content=result.to_dict())


@router.post("/updates/")
async def update_metrics_batch(
    metrics: List[Metric],
    store: MetricStore = Depends(get_store),
    backup: BackupManager = Depends(get_backup),
):
    """Apply a batch of JSON records in one all-or-nothing update."""
    gauges = [(m.id, m.value) for m in metrics if m.type == MetricKind.GAUGE]
    counters = [(m.id, m.delta) for m in metrics if m.type == MetricKind.COUNTER]

    await store.update_batch(gauges, counters)
    logger.debug("Batch applied", gauges=len(gauges), counters=len(counters))

    await after_write(backup)
    return JSONResponse(content=[m.to_dict() for m in metrics])
