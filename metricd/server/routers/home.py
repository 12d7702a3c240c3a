"""
metricd - Home Router

HTML overview of every stored metric and the storage health check.
"""

from html import escape

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, PlainTextResponse

from metricd.storage import MetricStore

from . import get_store

router = APIRouter()

PAGE = """<!DOCTYPE html>
<html>
<head><title>Metrics</title></head>
<body>
<h1>Gauges</h1>
<ul>
{gauges}
</ul>
<h1>Counters</h1>
<ul>
{counters}
</ul>
</body>
</html>
"""


def _items(pairs) -> str:
    return "\n".join(f"<li>{escape(name)}: {escape(value)}</li>" for name, value in pairs)


@router.get("/", response_class=HTMLResponse)
async def list_metrics(store: MetricStore = Depends(get_store)):
    gauges, counters = await store.get_all_metrics()
    return PAGE.format(gauges=_items(gauges), counters=_items(counters))


@router.get("/ping", response_class=PlainTextResponse)
async def ping(store: MetricStore = Depends(get_store)):
    """200 when the store answers; storage errors map to 500."""
    await store.ping()
    return "OK"
