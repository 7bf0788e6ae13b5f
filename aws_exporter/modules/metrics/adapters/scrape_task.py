import time
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any, Callable

import structlog
from prometheus_client.core import Metric
from prometheus_client.samples import Sample

from aws_exporter.modules.metrics.adapters.query_provider import MetricQueryProvider
from aws_exporter.modules.metrics.domain.batcher import QueryBatcher
from aws_exporter.modules.metrics.domain.query import MetricQuery
from aws_exporter.modules.metrics.domain.sample_builder import MetricSampleBuilder
from aws_exporter.shared.adapters.aws_pagination import iter_aws_pages
from aws_exporter.shared.adapters.aws_utils import (
    AccountProvider,
    AWSAccount,
    AWSClientProvider,
    call_labels,
)
from aws_exporter.shared.adapters.rate_limiter import RateLimiter
from aws_exporter.shared.core.constants import INTERVAL_LABEL

logger = structlog.get_logger()

# Scheduler fires can land a little early relative to the previous run's
# start; runs closer than interval minus this are treated as duplicates.
THROTTLE_TOLERANCE_SECONDS = 1.0


def _group_by_period(queries: Sequence[MetricQuery]) -> dict[int, list[MetricQuery]]:
    groups: dict[int, list[MetricQuery]] = {}
    for query in queries:
        groups.setdefault(query.period, []).append(query)
    return groups


class MetricScrapeTask:
    """
    Scrapes every metric configured at one scrape interval in one region,
    across all accounts that cover the region.

    `update()` publishes a new snapshot; `collect()` returns the last one.
    """

    def __init__(
        self,
        region: str,
        interval_seconds: int,
        delay_seconds: int,
        query_provider: MetricQueryProvider,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
        sample_builder: MetricSampleBuilder | None = None,
        batcher: QueryBatcher | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.region = region
        self.interval_seconds = interval_seconds
        self.delay_seconds = delay_seconds
        self.query_provider = query_provider
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self.sample_builder = sample_builder or MetricSampleBuilder()
        self.batcher = batcher or QueryBatcher()
        self.clock = clock
        self._last_scrape_time: float | None = None
        self._metrics: list[Metric] = []

    def _throttled(self, now: float) -> bool:
        if self._last_scrape_time is None:
            return False
        elapsed = now - self._last_scrape_time
        return elapsed < self.interval_seconds - THROTTLE_TOLERANCE_SECONDS

    async def update(self) -> None:
        now = self.clock()
        if self._throttled(now):
            logger.debug(
                "metric_scrape_throttled",
                region=self.region,
                interval=self.interval_seconds,
            )
            return
        self._metrics = await self.scrape(now)

    def collect(self) -> Iterable[Metric]:
        return self._metrics

    async def scrape(self, now: float | None = None) -> list[Metric]:
        now = self.clock() if now is None else now
        if self._throttled(now):
            return []

        logger.info(
            "metric_scrape_started", region=self.region, interval=self.interval_seconds
        )
        end_time = now - self.delay_seconds
        samples: list[Sample] = []
        for account in await self.account_provider.get_accounts():
            if self.region not in account.regions:
                continue
            samples.extend(await self._scrape_account(account, end_time))

        families = self.sample_builder.build_families(samples)
        self._last_scrape_time = now
        logger.info(
            "metric_scrape_completed",
            region=self.region,
            interval=self.interval_seconds,
            families=len(families),
            samples=len(samples),
        )
        return families

    async def _scrape_account(self, account: AWSAccount, end_time: float) -> list[Sample]:
        queries = self.query_provider.queries_for(
            account.account_id, self.region, self.interval_seconds
        )
        if not queries:
            logger.info(
                "metric_scrape_no_queries",
                account_id=account.account_id,
                region=self.region,
                interval=self.interval_seconds,
            )
            return []

        samples: list[Sample] = []
        try:
            async with self.client_provider.client(
                "cloudwatch", self.region, account
            ) as client:
                # One time window per call, so queries with different periods
                # are never mixed in a batch.
                for period, group in _group_by_period(queries).items():
                    start_time = end_time - max(self.interval_seconds, period)
                    batches = self.batcher.split_into_batches(group)
                    logger.debug(
                        "metric_queries_batched",
                        account_id=account.account_id,
                        region=self.region,
                        period=period,
                        batches=len(batches),
                    )
                    for batch in batches:
                        try:
                            samples.extend(
                                await self._run_batch(
                                    client, account, batch, start_time, end_time
                                )
                            )
                        except Exception as e:
                            logger.error(
                                "metric_scrape_batch_failed",
                                account_id=account.account_id,
                                region=self.region,
                                interval=self.interval_seconds,
                                queries=len(batch),
                                error=str(e),
                            )
        except Exception as e:
            logger.error(
                "metric_scrape_failed",
                account_id=account.account_id,
                region=self.region,
                interval=self.interval_seconds,
                error=str(e),
            )
        return samples

    async def _run_batch(
        self,
        client: Any,
        account: AWSAccount,
        batch: list[MetricQuery],
        start_time: float,
        end_time: float,
    ) -> list[Sample]:
        queries_by_id = {query.id: query for query in batch}
        samples: list[Sample] = []
        pages = iter_aws_pages(
            self.rate_limiter,
            client.get_metric_data,
            operation_name="CloudWatchClient/getMetricData",
            labels=call_labels(
                account.account_id,
                self.region,
                **{INTERVAL_LABEL: str(self.interval_seconds)},
            ),
            request={
                "MetricDataQueries": [q.to_metric_data_query() for q in batch],
                "StartTime": datetime.fromtimestamp(start_time, tz=timezone.utc),
                "EndTime": datetime.fromtimestamp(end_time, tz=timezone.utc),
            },
        )
        async for page in pages:
            for result in page.get("MetricDataResults", []):
                query = queries_by_id.get(result.get("Id", ""))
                if query is None:
                    logger.warning("metric_result_unmatched", query_id=result.get("Id"))
                    continue
                samples.extend(
                    self.sample_builder.build_samples(
                        self.region, account.account_id, query, result
                    )
                )
        return samples
