"""
Metrics collection and Prometheus-compatible exposition.

Series are keyed by name plus an optional label set, so one counter such as
errors_total can be split by failure stage and HTTP status:

    jira_relay_errors_total{stage="decode",status="500"} 1
"""

from __future__ import annotations

import time
from collections import defaultdict

PREFIX = "jira_relay_"

Labels = tuple[tuple[str, str], ...]

# Exposed as # HELP lines; series not listed here export without one.
DESCRIPTIONS = {
    "errors_total": "Requests that failed, by failure stage and HTTP status.",
    "posts_total": "Chat post attempts that finished, by outcome.",
    "store_conflicts_total": "Compare-and-set writes lost to a concurrent writer.",
    "store_conflicts_exhausted_total": "Writes abandoned after every attempt conflicted.",
    "subscription_writes_total": "Committed subscription changes, by operation.",
    "subscriptions_active": "Subscriptions held after the last committed write.",
    "webhooks_received_total": "Webhooks accepted for dispatch, by event kind.",
}


def _labels(labels: dict[str, object]) -> Labels:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


def _series(name: str, labels: Labels) -> str:
    if not labels:
        return f"{PREFIX}{name}"
    rendered = ",".join(
        '{}="{}"'.format(k, v.replace("\\", "\\\\").replace('"', '\\"')) for k, v in labels
    )
    return f"{PREFIX}{name}{{{rendered}}}"


class MetricsCollector:
    """
    Counters and gauges for the relay, exported in Prometheus text format.

    Counters only grow; gauges hold the last value set. Reading a counter
    without labels sums every series of that name.
    """

    def __init__(self) -> None:
        self._counters: dict[str, dict[Labels, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[Labels, float]] = defaultdict(dict)
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1, **labels: object) -> None:
        self._counters[name][_labels(labels)] += value

    def set_gauge(self, name: str, value: float, **labels: object) -> None:
        self._gauges[name][_labels(labels)] = value

    def get(self, name: str, **labels: object) -> int | float:
        """Sum of the series of `name` whose labels include the given ones."""
        wanted = set(_labels(labels))
        series = self._gauges.get(name) or self._counters.get(name) or {}
        return sum(v for key, v in series.items() if wanted <= set(key))

    def to_prometheus(self) -> str:
        lines = []
        for kind, table in (("counter", self._counters), ("gauge", self._gauges)):
            for name in sorted(table):
                if name in DESCRIPTIONS:
                    lines.append(f"# HELP {PREFIX}{name} {DESCRIPTIONS[name]}")
                lines.append(f"# TYPE {PREFIX}{name} {kind}")
                for labels, value in sorted(table[name].items()):
                    lines.append(f"{_series(name, labels)} {value}")
        uptime = time.time() - self._start_time
        lines.append(f"# TYPE {PREFIX}uptime_seconds gauge")
        lines.append(f"{PREFIX}uptime_seconds {uptime:.1f}")
        return "\n".join(lines) + "\n"
