"""
Capability interface shared by every exporter plus the single prometheus
collector that fans out to them.

Exporters never register with prometheus_client themselves. Several of them
publish into the same family name (`aws_resource` comes from three places),
so families are merged by name here before exposition.
"""

import threading
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

import structlog
from prometheus_client.core import Metric

logger = structlog.get_logger()


@runtime_checkable
class MetricProvider(Protocol):
    async def update(self) -> None:
        """Refresh internal state from AWS. Called by the scheduler."""
        ...

    def collect(self) -> Iterable[Metric]:
        """Return the latest published snapshot without doing any I/O."""
        ...


def build_family(
    name: str, samples: list[tuple[dict[str, str], float]], typ: str = "gauge"
) -> Metric:
    family = Metric(name, "", typ)
    for labels, value in samples:
        family.add_sample(name, labels, value)
    return family


class ProviderCollector:
    """prometheus_client custom collector over a growing set of providers."""

    def __init__(self) -> None:
        self._providers: list[MetricProvider] = []
        self._lock = threading.Lock()

    def add(self, provider: MetricProvider) -> None:
        with self._lock:
            if any(p is provider for p in self._providers):
                return
            self._providers.append(provider)

    @property
    def providers(self) -> tuple[MetricProvider, ...]:
        with self._lock:
            return tuple(self._providers)

    def describe(self) -> list[Metric]:
        # Family names are dynamic; skip the registry's duplicate check.
        return []

    def collect(self) -> Iterable[Metric]:
        merged: dict[str, Metric] = {}
        for provider in self.providers:
            try:
                families = list(provider.collect())
            except Exception as exc:
                logger.error(
                    "metric_provider_collect_failed",
                    provider=type(provider).__name__,
                    error=str(exc),
                )
                continue
            for family in families:
                existing = merged.get(family.name)
                if existing is None:
                    existing = Metric(family.name, family.documentation, family.type)
                    merged[family.name] = existing
                existing.samples.extend(family.samples)
        return [merged[name] for name in sorted(merged)]
