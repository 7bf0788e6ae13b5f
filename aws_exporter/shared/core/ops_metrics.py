"""
Operational metrics for the exporter itself.

Two flavours live here: static prometheus_client instruments for the scheduler
(fixed label sets), and `TelemetryCollector`, a sink that records arbitrary
label sets for remote calls and renders them at collection time.
"""

import threading
from collections.abc import Iterable
from dataclasses import dataclass

from prometheus_client import Counter, Gauge, Histogram
from prometheus_client.core import Metric

# --- Scheduling Metrics ---
SCHEDULED_TASKS = Gauge(
    "aws_exporter_scheduled_tasks",
    "Number of periodic tasks registered with the scheduler",
    ["kind"],
)

TASK_RUN_DURATION = Histogram(
    "aws_exporter_task_duration_seconds",
    "Duration of scheduled task executions",
    ["task", "status"],
    buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 120, 300),
)

TASK_RUN_FAILURES = Counter(
    "aws_exporter_task_failures_total",
    "Total number of scheduled task executions that raised",
    ["task"],
)

LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: dict[str, str]) -> LabelKey:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


@dataclass
class _Latency:
    count: int = 0
    total_millis: float = 0.0


class TelemetryCollector:
    """
    Thread-safe sink for self-telemetry with free-form label sets.

    Gauges keep the last value, counters accumulate, latencies keep a
    count and a sum. `collect()` renders them as gauge, counter and summary
    families.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._gauges: dict[str, dict[LabelKey, float]] = {}
        self._counters: dict[str, dict[LabelKey, float]] = {}
        self._latencies: dict[str, dict[LabelKey, _Latency]] = {}

    def record_gauge_value(
        self, name: str, labels: dict[str, str], value: float
    ) -> None:
        with self._lock:
            series = self._gauges.setdefault(name, {})
            series[_label_key(labels)] = value

    def record_counter_value(
        self, name: str, labels: dict[str, str], value: float = 1.0
    ) -> None:
        with self._lock:
            series = self._counters.setdefault(name, {})
            key = _label_key(labels)
            series[key] = series.get(key, 0.0) + value

    def record_latency(
        self, name: str, labels: dict[str, str], millis: float
    ) -> None:
        with self._lock:
            series = self._latencies.setdefault(name, {})
            entry = series.setdefault(_label_key(labels), _Latency())
            entry.count += 1
            entry.total_millis += millis

    async def update(self) -> None:
        """Nothing to refresh; values are pushed in by callers."""

    def collect(self) -> Iterable[Metric]:
        with self._lock:
            gauges = {n: dict(s) for n, s in self._gauges.items()}
            counters = {n: dict(s) for n, s in self._counters.items()}
            latencies = {
                n: {k: _Latency(v.count, v.total_millis) for k, v in s.items()}
                for n, s in self._latencies.items()
            }

        families: list[Metric] = []
        for name, series in sorted(gauges.items()):
            family = Metric(name, "", "gauge")
            for key, value in series.items():
                family.add_sample(name, dict(key), value)
            families.append(family)

        for name, series in sorted(counters.items()):
            family = Metric(name, "", "counter")
            for key, value in series.items():
                family.add_sample(f"{family.name}_total", dict(key), value)
            families.append(family)

        for name, series in sorted(latencies.items()):
            family = Metric(name, "", "summary")
            for key, latency in series.items():
                labels = dict(key)
                family.add_sample(f"{name}_count", labels, latency.count)
                family.add_sample(f"{name}_sum", labels, latency.total_millis)
            families.append(family)

        return families
