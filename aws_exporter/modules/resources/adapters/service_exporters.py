"""
`aws_resource` samples for services AWS Config does not cover well:
SNS topics and Kinesis Analytics applications.
"""

from collections.abc import Iterable

import structlog
from prometheus_client.core import Metric

from aws_exporter.modules.resources.domain.mapper import ResourceMapper
from aws_exporter.shared.adapters.aws_pagination import iter_aws_pages
from aws_exporter.shared.adapters.aws_utils import (
    AccountProvider,
    AWSClientProvider,
    call_labels,
)
from aws_exporter.shared.adapters.rate_limiter import RateLimiter
from aws_exporter.shared.core.constants import (
    ACCOUNT_ID_LABEL,
    JOB_LABEL,
    NAMESPACE_LABEL,
    REGION_LABEL,
    RESOURCE_METRIC,
)
from aws_exporter.shared.core.metric_provider import build_family

logger = structlog.get_logger()


class SNSTopicExporter:
    def __init__(
        self,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
        mapper: ResourceMapper | None = None,
    ):
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self.mapper = mapper or ResourceMapper()
        self._metrics: list[Metric] = []

    async def update(self) -> None:
        logger.info("sns_topic_export_started")
        samples: list[tuple[dict[str, str], float]] = []
        for account in await self.account_provider.get_accounts():
            for region in account.regions:
                try:
                    async with self.client_provider.client("sns", region, account) as client:
                        pages = iter_aws_pages(
                            self.rate_limiter,
                            client.list_topics,
                            operation_name="SnsClient/listTopics",
                            labels=call_labels(account.account_id, region),
                        )
                        async for page in pages:
                            for topic in page.get("Topics", []):
                                resource = self.mapper.map(topic.get("TopicArn"))
                                if resource is None:
                                    continue
                                samples.append(
                                    (
                                        {
                                            ACCOUNT_ID_LABEL: account.account_id,
                                            REGION_LABEL: region,
                                            "aws_resource_type": "AWS::SNS::Topic",
                                            JOB_LABEL: resource.name,
                                            "name": resource.name,
                                            NAMESPACE_LABEL: "AWS/SNS",
                                        },
                                        1.0,
                                    )
                                )
                except Exception as e:
                    logger.error(
                        "sns_topic_export_failed",
                        account_id=account.account_id,
                        region=region,
                        error=str(e),
                    )
        self._metrics = [build_family(RESOURCE_METRIC, samples)] if samples else []

    def collect(self) -> Iterable[Metric]:
        return self._metrics


class KinesisAnalyticsExporter:
    def __init__(
        self,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
        mapper: ResourceMapper | None = None,
    ):
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self.mapper = mapper or ResourceMapper()
        self._metrics: list[Metric] = []

    async def update(self) -> None:
        samples: list[tuple[dict[str, str], float]] = []
        for account in await self.account_provider.get_accounts():
            for region in account.regions:
                try:
                    async with self.client_provider.client(
                        "kinesisanalyticsv2", region, account
                    ) as client:
                        pages = iter_aws_pages(
                            self.rate_limiter,
                            client.list_applications,
                            operation_name="KinesisAnalyticsV2Client/listApplications",
                            labels=call_labels(account.account_id, region),
                        )
                        async for page in pages:
                            for summary in page.get("ApplicationSummaries", []):
                                resource = self.mapper.map(summary.get("ApplicationARN"))
                                if resource is None:
                                    continue
                                labels = resource.labels()
                                labels["aws_resource_type"] = labels.pop("type")
                                labels[ACCOUNT_ID_LABEL] = labels.pop("account") or account.account_id
                                samples.append((labels, 1.0))
                except Exception as e:
                    logger.error(
                        "kinesis_analytics_export_failed",
                        account_id=account.account_id,
                        region=region,
                        error=str(e),
                    )
        self._metrics = [build_family(RESOURCE_METRIC, samples)] if samples else []

    def collect(self) -> Iterable[Metric]:
        return self._metrics
