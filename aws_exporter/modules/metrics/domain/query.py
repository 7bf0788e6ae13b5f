import math
import re
from dataclasses import dataclass
from typing import Any

from aws_exporter.shared.core.scrape_config import Stat

# GetMetricData rejects ids outside this grammar.
QUERY_ID_PATTERN = re.compile(r"^[a-z][a-zA-Z0-9_]*$")


@dataclass(frozen=True)
class MetricQuery:
    """One GetMetricData query. `id` correlates results within a single call."""

    id: str
    namespace: str
    metric_name: str
    dimensions: tuple[tuple[str, str], ...]
    stat: Stat
    period: int
    scrape_interval: int

    def __post_init__(self) -> None:
        if not QUERY_ID_PATTERN.match(self.id):
            raise ValueError(f"invalid metric query id {self.id!r}")
        if self.period <= 0 or self.scrape_interval <= 0:
            raise ValueError("period and scrape_interval must be > 0")

    @property
    def window_seconds(self) -> int:
        return max(self.scrape_interval, self.period)

    @property
    def datapoints(self) -> int:
        """Datapoints one call returns for this query over its window."""
        return math.ceil(self.window_seconds / self.period)

    @property
    def dimension_map(self) -> dict[str, str]:
        return dict(self.dimensions)

    def to_metric_data_query(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "MetricStat": {
                "Metric": {
                    "Namespace": self.namespace,
                    "MetricName": self.metric_name,
                    "Dimensions": [
                        {"Name": name, "Value": value} for name, value in self.dimensions
                    ],
                },
                "Period": self.period,
                "Stat": self.stat.value,
            },
            "ReturnData": True,
        }
