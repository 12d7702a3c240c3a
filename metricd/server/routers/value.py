"""
metricd - Value Router

Read-back endpoints for single metrics.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse

from metricd.models import Metric, MetricKind, MetricQuery, parse_kind
from metricd.storage import MetricStore

from . import get_store

router = APIRouter()


@router.get("/value/{kind}/{name}", response_class=PlainTextResponse)
async def get_value(kind: str, name: str, store: MetricStore = Depends(get_store)):
    """Formatted value of one metric as plain text."""
    return await store.get_metric(parse_kind(kind), name)


@router.post("/value/")
async def get_value_json(query: MetricQuery, store: MetricStore = Depends(get_store)):
    """Current value of one metric as a JSON record."""
    value = await store.get_metric(query.type, query.id)
    if query.type == MetricKind.GAUGE:
        metric = Metric.gauge(query.id, value)
    else:
        metric = Metric.counter(query.id, value)
    return JSONResponse(content=metric.to_dict())
