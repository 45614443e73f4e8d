"""
Watchlist metrics and Prometheus-compatible exposition.

The names below are the only series the client emits. Mutations are counted
once per call, labelled with their kind (toggle, delete, subscribe) and the
outcome they ended with, so rollbacks and superseded writes can be told apart
from confirmed ones.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any

PREFIX = "watchlist_"

# Counters
MUTATIONS_TOTAL = "mutations_total"  # kind, outcome
REFRESH_TOTAL = "refresh_total"
REFRESH_ERRORS_TOTAL = "refresh_errors_total"
REFRESH_STALE_TOTAL = "refresh_stale_total"
REMOTE_ERRORS_TOTAL = "remote_errors_total"  # method

# Gauges
SUBSCRIPTIONS = "subscriptions"
PENDING_WRITES = "pending_writes"
BACKEND_REACHABLE = "backend_reachable"

LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: dict[str, Any]) -> LabelKey:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


def _series(name: str, key: LabelKey) -> str:
    if not key:
        return PREFIX + name
    inner = ",".join(f'{k}="{v}"' for k, v in key)
    return f"{PREFIX}{name}{{{inner}}}"


class MetricsCollector:
    """Labelled counters and plain gauges for one watchlist view."""

    def __init__(self) -> None:
        self._counters: dict[tuple[str, LabelKey], int] = defaultdict(int)
        self._gauges: dict[str, float] = {}
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1, **labels: Any) -> None:
        self._counters[(name, _label_key(labels))] += value

    def set_gauge(self, name: str, value: float) -> None:
        self._gauges[name] = value

    def record_mutation(self, kind: str, outcome: str) -> None:
        self.inc(MUTATIONS_TOTAL, kind=kind, outcome=outcome)

    def get(self, name: str, **labels: Any) -> int | float:
        """
        Current value of a gauge, or of a counter summed over every label set
        that includes ``labels``.
        """
        if name in self._gauges:
            return self._gauges[name]
        wanted = set(_label_key(labels))
        return sum(
            value
            for (counter, key), value in self._counters.items()
            if counter == name and wanted <= set(key)
        )

    def to_prometheus(self) -> str:
        lines = []
        typed: set[str] = set()
        for (name, key), value in sorted(self._counters.items()):
            if name not in typed:
                lines.append(f"# TYPE {PREFIX}{name} counter")
                typed.add(name)
            lines.append(f"{_series(name, key)} {value}")
        for name, value in sorted(self._gauges.items()):
            lines.append(f"# TYPE {PREFIX}{name} gauge")
            lines.append(f"{PREFIX}{name} {value}")
        uptime = time.time() - self._start_time
        lines.append(f"# TYPE {PREFIX}uptime_seconds gauge")
        lines.append(f"{PREFIX}uptime_seconds {uptime:.1f}")
        return "\n".join(lines) + "\n"
