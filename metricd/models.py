"""
metricd - Metric Models

Metric kinds, the JSON wire record shared by the agent, the server and the
backup file, and the canonical string formatting of metric values.
"""

import math
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, model_validator

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class MetricKind(str, Enum):
    """Metric kind, also the wire value of the `type` field."""
    GAUGE = "gauge"
    COUNTER = "counter"


class ParseError(ValueError):
    """A metric value could not be parsed for its kind."""


class Metric(BaseModel):
    """
    One metric record on the wire and in the backup file.

    Gauges carry `value`, counters carry `delta`. The field order matches the
    serialized order: id, type, delta, value.
    """
    id: str
    type: MetricKind
    delta: Optional[int] = None
    value: Optional[float] = None

    @model_validator(mode="after")
    def _check_payload(self) -> "Metric":
        if not self.id:
            raise ValueError("metric id is empty")
        if self.type == MetricKind.GAUGE:
            if self.value is None:
                raise ValueError(f"gauge {self.id!r} has no value")
            self.delta = None
        else:
            if self.delta is None:
                raise ValueError(f"counter {self.id!r} has no delta")
            if not INT64_MIN <= self.delta <= INT64_MAX:
                raise ValueError(f"counter {self.id!r} is out of int64 range")
            self.value = None
        return self

    @classmethod
    def gauge(cls, name: str, value: Any) -> "Metric":
        return cls(id=name, type=MetricKind.GAUGE, value=parse_gauge(value))

    @classmethod
    def counter(cls, name: str, delta: Any) -> "Metric":
        return cls(id=name, type=MetricKind.COUNTER, delta=parse_counter(delta))

    @property
    def formatted(self) -> str:
        """Value formatted the way the store reports it."""
        if self.type == MetricKind.GAUGE:
            return format_gauge(self.value)
        return format_counter(self.delta)

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation without the field that does not apply."""
        return self.model_dump(mode="json", exclude_none=True)


class MetricQuery(BaseModel):
    """Read-back request body: which metric to return."""
    id: str
    type: MetricKind


def parse_kind(raw: str) -> MetricKind:
    try:
        return MetricKind(raw)
    except ValueError:
        raise ParseError(f"unknown metric type: {raw!r}") from None


def format_gauge(value: float) -> str:
    """
    Shortest round-tripping decimal text for `value`.

    Never uses exponent notation and drops a trailing ".0":
    42.0 -> "42", 100.5 -> "100.5", 1e-05 -> "0.00001".
    """
    text = repr(float(value))
    if "e" in text or "E" in text:
        text = format(Decimal(text), "f")
    if text.endswith(".0"):
        text = text[:-2]
    return text


def format_counter(value: int) -> str:
    return str(int(value))


def parse_gauge(raw: Any) -> float:
    """Parse a gauge value from a number or a string."""
    if isinstance(raw, bool):
        raise ParseError(f"invalid gauge value: {raw!r}")
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        if raw != raw.strip() or "_" in raw:
            raise ParseError(f"invalid gauge value: {raw!r}")
        try:
            value = float(raw)
        except ValueError:
            raise ParseError(f"invalid gauge value: {raw!r}") from None
    else:
        raise ParseError(f"invalid gauge value: {raw!r}")

    if not math.isfinite(value):
        raise ParseError(f"gauge value is not finite: {raw!r}")
    return value


def parse_counter(raw: Any) -> int:
    """Parse a counter delta from an int or a base-prefixed integer string."""
    if isinstance(raw, bool):
        raise ParseError(f"invalid counter value: {raw!r}")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str):
        if raw != raw.strip():
            raise ParseError(f"invalid counter value: {raw!r}")
        try:
            value = int(raw, 0)
        except ValueError:
            raise ParseError(f"invalid counter value: {raw!r}") from None
    else:
        raise ParseError(f"invalid counter value: {raw!r}")

    if not INT64_MIN <= value <= INT64_MAX:
        raise ParseError(f"counter value out of int64 range: {raw!r}")
    return value


def add_counter(name: str, current: int, delta: int) -> int:
    """Accumulated total; raises ParseError if it leaves the int64 range."""
    total = current + delta
    if not INT64_MIN <= total <= INT64_MAX:
        raise ParseError(f"counter {name!r} would overflow int64: {current} + {delta}")
    return total


def parse_value(kind: MetricKind, raw: Any) -> Any:
    if kind == MetricKind.GAUGE:
        return parse_gauge(raw)
    return parse_counter(raw)


def format_value(kind: MetricKind, value: Any) -> str:
    if kind == MetricKind.GAUGE:
        return format_gauge(value)
    return format_counter(value)
