from collections.abc import Sequence

from aws_exporter.modules.metrics.domain.query import MetricQuery
from aws_exporter.shared.core.constants import (
    MAX_DATAPOINTS_PER_CALL,
    MAX_METRICS_PER_CALL,
)


class QueryBatcher:
    """
    Greedy, order-preserving split of queries into GetMetricData calls.

    A batch is closed as soon as adding the next query would take it past
    either the query count or the datapoint ceiling. A query that alone
    exceeds the datapoint ceiling still gets a batch of its own.
    """

    def __init__(
        self,
        max_metrics: int = MAX_METRICS_PER_CALL,
        max_datapoints: int = MAX_DATAPOINTS_PER_CALL,
    ):
        if max_metrics <= 0 or max_datapoints <= 0:
            raise ValueError("batch limits must be > 0")
        self.max_metrics = max_metrics
        self.max_datapoints = max_datapoints

    def split_into_batches(
        self, queries: Sequence[MetricQuery]
    ) -> list[list[MetricQuery]]:
        batches: list[list[MetricQuery]] = []
        current: list[MetricQuery] = []
        datapoints = 0
        for query in queries:
            needed = query.datapoints
            if current and (
                len(current) >= self.max_metrics
                or datapoints + needed > self.max_datapoints
            ):
                batches.append(current)
                current = []
                datapoints = 0
            current.append(query)
            datapoints += needed
        if current:
            batches.append(current)
        return batches
