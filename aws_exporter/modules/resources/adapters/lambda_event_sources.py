from collections.abc import Iterable

import structlog
from prometheus_client.core import Metric

from aws_exporter.modules.resources.domain.mapper import ResourceMapper
from aws_exporter.modules.resources.domain.resource import Resource
from aws_exporter.shared.adapters.aws_pagination import iter_aws_pages
from aws_exporter.shared.adapters.aws_utils import (
    AccountProvider,
    AWSClientProvider,
    call_labels,
)
from aws_exporter.shared.adapters.rate_limiter import RateLimiter
from aws_exporter.shared.core.constants import (
    ACCOUNT_ID_LABEL,
    LAMBDA_EVENT_SOURCE_METRIC,
    NAMESPACE_LABEL,
    REGION_LABEL,
)
from aws_exporter.shared.core.metric_provider import build_family
from aws_exporter.shared.core.scrape_config import ScrapeConfigProvider

logger = structlog.get_logger()

LAMBDA_NAMESPACE = "AWS/Lambda"


def event_source_labels(region: str, function: Resource, source: Resource) -> dict[str, str]:
    labels = {
        REGION_LABEL: region,
        "lambda_function": function.name,
        ACCOUNT_ID_LABEL: function.account,
    }
    labels.update(source.labels("event_source"))
    return labels


class LambdaEventSourceExporter:
    """Which queue, stream or table triggers which Lambda function."""

    def __init__(
        self,
        config_provider: ScrapeConfigProvider,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
        mapper: ResourceMapper | None = None,
    ):
        self.config_provider = config_provider
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self.mapper = mapper or ResourceMapper()
        self._metrics: list[Metric] = []

    async def update(self) -> None:
        config = self.config_provider.get_scrape_config()
        if not any(ns.name == LAMBDA_NAMESPACE for ns in config.namespaces):
            self._metrics = []
            return

        samples: list[tuple[dict[str, str], float]] = []
        for account in await self.account_provider.get_accounts():
            for region in account.regions:
                logger.info(
                    "lambda_event_source_discovery_started",
                    account_id=account.account_id,
                    region=region,
                )
                try:
                    async with self.client_provider.client(
                        "lambda", region, account
                    ) as client:
                        pages = iter_aws_pages(
                            self.rate_limiter,
                            client.list_event_source_mappings,
                            operation_name="LambdaClient/listEventSourceMappings",
                            labels=call_labels(
                                account.account_id,
                                region,
                                **{NAMESPACE_LABEL: LAMBDA_NAMESPACE},
                            ),
                            token_key="Marker",
                            response_token_key="NextMarker",
                        )
                        async for page in pages:
                            for mapping in page.get("EventSourceMappings", []):
                                function = self.mapper.map(mapping.get("FunctionArn"))
                                source = self.mapper.map(mapping.get("EventSourceArn"))
                                if function is None or source is None:
                                    continue
                                samples.append(
                                    (event_source_labels(region, function, source), 1.0)
                                )
                except Exception as e:
                    logger.error(
                        "lambda_event_source_discovery_failed",
                        account_id=account.account_id,
                        region=region,
                        error=str(e),
                    )

        self._metrics = (
            [build_family(LAMBDA_EVENT_SOURCE_METRIC, samples)] if samples else []
        )

    def collect(self) -> Iterable[Metric]:
        return self._metrics
