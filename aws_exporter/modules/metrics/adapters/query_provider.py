"""
Discovers which CloudWatch metrics exist (ListMetrics) and turns them into
`MetricQuery` lists keyed by (account id, region, scrape interval).

Runs on the minute-aligned metadata cadence but only hits AWS once the
configured ListMetrics cache TTL has expired.
"""

import itertools
import time
from collections.abc import Iterable
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping

import structlog
from prometheus_client.core import Metric

from aws_exporter.modules.metrics.domain.query import MetricQuery
from aws_exporter.shared.adapters.aws_pagination import iter_aws_pages
from aws_exporter.shared.adapters.aws_utils import (
    AccountProvider,
    AWSAccount,
    AWSClientProvider,
    call_labels,
)
from aws_exporter.shared.adapters.rate_limiter import RateLimiter
from aws_exporter.shared.core.config import get_settings
from aws_exporter.shared.core.constants import NAMESPACE_LABEL
from aws_exporter.shared.core.scrape_config import (
    NamespaceConfig,
    ScrapeConfig,
    ScrapeConfigProvider,
)

logger = structlog.get_logger()

QueryKey = tuple[str, str, int]


class MetricQueryProvider:
    def __init__(
        self,
        config_provider: ScrapeConfigProvider,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config_provider = config_provider
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self.clock = clock
        self._queries: Mapping[QueryKey, tuple[MetricQuery, ...]] = MappingProxyType({})
        self._last_refresh: float | None = None

    def get_metric_queries(self) -> Mapping[QueryKey, tuple[MetricQuery, ...]]:
        return self._queries

    def queries_for(
        self, account_id: str, region: str, interval: int
    ) -> tuple[MetricQuery, ...]:
        return self._queries.get((account_id, region, interval), ())

    def _is_fresh(self, config: ScrapeConfig) -> bool:
        if self._last_refresh is None:
            return False
        ttl = config.list_metrics_result_cache_ttl_minutes * 60
        return self.clock() - self._last_refresh < ttl

    async def _list_metrics(
        self, client: Any, account: AWSAccount, region: str, ns: NamespaceConfig
    ) -> list[dict[str, Any]]:
        metrics: list[dict[str, Any]] = []
        wanted = ns.metric_names
        pages = iter_aws_pages(
            self.rate_limiter,
            client.list_metrics,
            operation_name="CloudWatchClient/listMetrics",
            labels=call_labels(account.account_id, region, **{NAMESPACE_LABEL: ns.name}),
            request={"Namespace": ns.name},
            max_pages=get_settings().AWS_LIST_MAX_PAGES,
        )
        async for page in pages:
            for metric in page.get("Metrics", []):
                if metric.get("MetricName") in wanted:
                    metrics.append(metric)
        return metrics

    def _build_queries(
        self,
        config: ScrapeConfig,
        ns: NamespaceConfig,
        metrics: list[dict[str, Any]],
        ids: Iterator[int],
    ) -> list[MetricQuery]:
        queries: list[MetricQuery] = []
        for metric in metrics:
            metric_config = ns.get_metric(metric["MetricName"])
            if metric_config is None:
                continue
            dimensions = {d["Name"]: d["Value"] for d in metric.get("Dimensions", [])}
            if not ns.matches_dimensions(dimensions):
                continue
            for stat in metric_config.stats:
                queries.append(
                    MetricQuery(
                        id=f"q_{next(ids)}",
                        namespace=ns.name,
                        metric_name=metric_config.name,
                        dimensions=tuple(sorted(dimensions.items())),
                        stat=stat,
                        period=config.period_of(ns, metric_config),
                        scrape_interval=config.interval_of(ns, metric_config),
                    )
                )
        return queries

    async def update(self) -> None:
        config = self.config_provider.get_scrape_config()
        if self._is_fresh(config):
            return

        previous = self._queries
        refreshed: dict[QueryKey, list[MetricQuery]] = {}
        for account in await self.account_provider.get_accounts():
            for region in account.regions:
                ids = itertools.count(1)
                try:
                    async with self.client_provider.client(
                        "cloudwatch", region, account
                    ) as client:
                        for ns in config.namespaces:
                            metrics = await self._list_metrics(client, account, region, ns)
                            for query in self._build_queries(config, ns, metrics, ids):
                                key = (account.account_id, region, query.scrape_interval)
                                refreshed.setdefault(key, []).append(query)
                except Exception as e:
                    logger.error(
                        "list_metrics_failed",
                        account_id=account.account_id,
                        region=region,
                        error=str(e),
                    )
                    # Keep serving what this account/region had before.
                    for key in [k for k in refreshed if k[:2] == (account.account_id, region)]:
                        del refreshed[key]
                    for key, queries in previous.items():
                        if key[:2] == (account.account_id, region):
                            refreshed[key] = list(queries)

        self._queries = MappingProxyType(
            {key: tuple(queries) for key, queries in refreshed.items()}
        )
        self._last_refresh = self.clock()
        logger.info(
            "metric_queries_refreshed",
            keys=len(self._queries),
            queries=sum(len(q) for q in self._queries.values()),
        )

    def collect(self) -> Iterable[Metric]:
        return []
