"""Unified metric schema + helpers."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable


@dataclass
class Metric:
    metric_name: str
    value: float
    unit: str = ""
    scope: str = "process"
    tags: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric_name,
            "value": self.value,
            "unit": self.unit,
            "scope": self.scope,
            "tags": self.tags or {},
        }


def quantile_index(n: int, q: float) -> int:
    """Nearest-rank index ``ceil(n * q) - 1`` clamped to ``[0, n - 1]``.

    For 100 values the 95th percentile is the element at index 94. This is
    one lower than a plain ``floor(n * q)`` whenever ``n * q`` is a whole
    number below ``n`` (P99 of 100 is index 98, P95 of 20 is index 18) and
    equal otherwise.
    """
    if n <= 0:
        return 0
    return max(0, min(math.ceil(n * q) - 1, n - 1))


def quantile(values: list[float], q: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    return ordered[quantile_index(len(ordered), q)]


def metrics_table(metrics: Iterable[Metric]) -> dict[str, float]:
    """Flatten metrics into ``{name: value}``."""
    return {m.metric_name: m.value for m in metrics}
