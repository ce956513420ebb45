"""
Metrics collection and Prometheus-compatible exposition.

Counters may carry labels, e.g. ``inc("channel_posts_total", kind="push")``
is exported as ``bridge_channel_posts_total{kind="push"} 1``.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any

_LabelSet = tuple[tuple[str, str], ...]


def _labels_text(labels: _LabelSet) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in labels) + "}"


class MetricsCollector:
    """Webhook intake and delivery counters, plus gauges."""

    def __init__(self) -> None:
        self._counters: dict[str, dict[_LabelSet, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, float] = {}
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1, **labels: str) -> None:
        self._counters[f"bridge_{name}"][tuple(sorted(labels.items()))] += value

    def set_gauge(self, name: str, value: float) -> None:
        self._gauges[f"bridge_{name}"] = value

    def get(self, name: str, **labels: str) -> int | float:
        """Value of one series; without labels, the counter summed over all label sets."""
        full = f"bridge_{name}"
        if full in self._gauges:
            return self._gauges[full]
        series = self._counters.get(full, {})
        if labels:
            return series.get(tuple(sorted(labels.items())), 0)
        return sum(series.values())

    def to_prometheus(self) -> str:
        lines = []
        for name, series in sorted(self._counters.items()):
            lines.append(f"# TYPE {name} counter")
            for labels, value in sorted(series.items()):
                lines.append(f"{name}{_labels_text(labels)} {value}")
        for name, value in sorted(self._gauges.items()):
            lines.append(f"# TYPE {name} gauge")
            lines.append(f"{name} {value}")
        uptime = time.time() - self._start_time
        lines.append("# TYPE bridge_uptime_seconds gauge")
        lines.append(f"bridge_uptime_seconds {uptime:.1f}")
        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, Any]:
        return {
            "counters": {
                name + _labels_text(labels): value
                for name, series in self._counters.items()
                for labels, value in series.items()
            },
            "gauges": dict(self._gauges),
            "uptime_seconds": time.time() - self._start_time,
        }
