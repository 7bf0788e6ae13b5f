import re
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from prometheus_client.core import Metric
from prometheus_client.samples import Sample

from aws_exporter.modules.metrics.domain.query import MetricQuery
from aws_exporter.modules.resources.domain.mapper import ResourceMapper
from aws_exporter.shared.core.constants import (
    ACCOUNT_ID_LABEL,
    JOB_LABEL,
    NAMESPACE_LABEL,
    REGION_LABEL,
)
from aws_exporter.shared.core.scrape_config import Stat

STAT_SUFFIXES: dict[Stat, str] = {
    Stat.SUM: "sum",
    Stat.AVERAGE: "avg",
    Stat.MAXIMUM: "max",
    Stat.MINIMUM: "min",
    Stat.SAMPLE_COUNT: "samples",
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_]+")


def to_snake_case(value: str) -> str:
    """`ConcurrentExecutions` -> `concurrent_executions`, `CPUUtilization` -> `cpu_utilization`."""
    value = _CAMEL_BOUNDARY.sub("_", value)
    value = _INVALID_CHARS.sub("_", value)
    return value.strip("_").lower()


def metric_prefix(namespace: str) -> str:
    """`AWS/Lambda` -> `aws_lambda`; custom namespaces keep their own words."""
    if namespace.startswith("AWS/"):
        return "aws_" + to_snake_case(namespace[4:]).replace("_", "")
    return to_snake_case(namespace)


def metric_name(query: MetricQuery) -> str:
    return "_".join(
        (
            metric_prefix(query.namespace),
            to_snake_case(query.metric_name),
            STAT_SUFFIXES[query.stat],
        )
    )


def dimension_label(name: str) -> str:
    return "d_" + to_snake_case(name)


class MetricSampleBuilder:
    """Turns GetMetricData results into timestamped gauge samples."""

    def __init__(self, mapper: ResourceMapper | None = None):
        self.mapper = mapper or ResourceMapper()

    def labels_for(self, region: str, account_id: str, query: MetricQuery) -> dict[str, str]:
        labels = {
            REGION_LABEL: region,
            ACCOUNT_ID_LABEL: account_id,
            NAMESPACE_LABEL: query.namespace,
        }
        for name, value in query.dimensions:
            labels[dimension_label(name)] = value
            resource = self.mapper.map(value)
            if resource is not None:
                labels.setdefault(JOB_LABEL, resource.name)
        return labels

    def build_samples(
        self,
        region: str,
        account_id: str,
        query: MetricQuery,
        result: dict[str, Any],
    ) -> list[Sample]:
        name = metric_name(query)
        labels = self.labels_for(region, account_id, query)
        samples: list[Sample] = []
        for timestamp, value in zip(result.get("Timestamps", []), result.get("Values", [])):
            ts = timestamp.timestamp() if isinstance(timestamp, datetime) else float(timestamp)
            samples.append(Sample(name, dict(labels), float(value), ts))
        return samples

    def build_families(self, samples: Iterable[Sample]) -> list[Metric]:
        """Group samples into one gauge family per metric name, sorted by name."""
        by_name: dict[str, Metric] = {}
        for sample in samples:
            family = by_name.get(sample.name)
            if family is None:
                family = Metric(sample.name, "", "gauge")
                by_name[sample.name] = family
            family.samples.append(sample)
        return [by_name[name] for name in sorted(by_name)]
