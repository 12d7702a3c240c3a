"""
metricd - Metric Sources

Sources the agent polls:
- SystemSource: host memory and per-core CPU
- RuntimeSource: the agent process and its garbage collector
"""

from .base import MetricSource, MetricSourceError
from .runtime import RuntimeSource
from .system import SystemSource

__all__ = [
    "MetricSource",
    "MetricSourceError",
    "RuntimeSource",
    "SystemSource",
]
