from collections.abc import Iterable
from typing import Any, Optional

import structlog
from prometheus_client.core import Metric

from aws_exporter.modules.resources.domain.mapper import ResourceMapper
from aws_exporter.modules.resources.domain.resource import Resource, ResourceType
from aws_exporter.shared.adapters.aws_pagination import iter_aws_pages
from aws_exporter.shared.adapters.aws_utils import (
    AccountProvider,
    AWSAccount,
    AWSClientProvider,
    call_labels,
)
from aws_exporter.shared.adapters.rate_limiter import RateLimiter
from aws_exporter.shared.core.config import get_settings
from aws_exporter.shared.core.constants import (
    ACCOUNT_ID_LABEL,
    JOB_LABEL,
    REGION_LABEL,
    RESOURCE_METRIC,
)
from aws_exporter.shared.core.metric_provider import build_family
from aws_exporter.shared.core.scrape_config import ScrapeConfigProvider

logger = structlog.get_logger()


def _is_url_or_arn(value: str) -> bool:
    return "arn:aws" in value or "https://" in value


def basic_resource_labels(
    region: str,
    account_id: str,
    aws_resource_type: str,
    resource_id: Optional[str],
    resource_name: Optional[str],
    arn_resource: Optional[Resource],
) -> dict[str, str]:
    """
    Labels of one `aws_resource` sample.

    `id`, `name` and `job` come from the discovery record first and are
    filled in from the parsed ARN when it has them. ARNs and URLs are never
    kept as `id`.
    """
    labels = {
        REGION_LABEL: region,
        ACCOUNT_ID_LABEL: account_id,
        "aws_resource_type": aws_resource_type,
    }
    if resource_id is not None:
        labels["id"] = resource_id
    if resource_name is not None:
        labels["name"] = resource_name
        labels[JOB_LABEL] = resource_name

    if arn_resource is not None:
        labels.setdefault(JOB_LABEL, arn_resource.name)
        labels.setdefault("name", arn_resource.name)
        if arn_resource.id:
            labels["id"] = arn_resource.id
        elif resource_name is not None and resource_name != arn_resource.name:
            labels["id"] = arn_resource.name
        if arn_resource.account:
            labels[ACCOUNT_ID_LABEL] = arn_resource.account
        if arn_resource.type == ResourceType.LOAD_BALANCER and arn_resource.sub_type:
            labels["type"] = arn_resource.sub_type
        elif arn_resource.type == ResourceType.ECS_SERVICE and arn_resource.child_of:
            labels["cluster"] = arn_resource.child_of.name

    if "id" in labels and _is_url_or_arn(labels["id"]):
        del labels["id"]

    labels.setdefault(JOB_LABEL, resource_name or resource_id or "")
    return labels


class ResourceExporter:
    """`aws_resource` samples for every resource AWS Config has discovered."""

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

    async def _discover(
        self, client: Any, account: AWSAccount, region: str, resource_type: str
    ) -> list[tuple[dict[str, str], float]]:
        samples: list[tuple[dict[str, str], float]] = []
        pages = iter_aws_pages(
            self.rate_limiter,
            client.list_discovered_resources,
            operation_name="ConfigClient/listDiscoveredResources",
            labels=call_labels(account.account_id, region),
            request={"resourceType": resource_type, "includeDeletedResources": False},
            token_key="nextToken",
            max_pages=get_settings().AWS_LIST_MAX_PAGES,
        )
        async for page in pages:
            for identifier in page.get("resourceIdentifiers", []):
                resource_id = identifier.get("resourceId")
                resource_name = identifier.get("resourceName")
                labels = basic_resource_labels(
                    region,
                    account.account_id,
                    identifier.get("resourceType", resource_type),
                    resource_id,
                    resource_name,
                    self.mapper.map(resource_id),
                )
                samples.append((labels, 1.0))
        return samples

    async def update(self) -> None:
        config = self.config_provider.get_scrape_config()
        resource_types = config.discover_resource_types
        if not resource_types:
            return

        logger.info("resource_export_started", resource_types=resource_types)
        samples: list[tuple[dict[str, str], float]] = []
        for account in await self.account_provider.get_accounts():
            for region in account.regions:
                try:
                    async with self.client_provider.client(
                        "config", region, account
                    ) as client:
                        for resource_type in resource_types:
                            try:
                                samples.extend(
                                    await self._discover(
                                        client, account, region, resource_type
                                    )
                                )
                            except Exception as e:
                                logger.error(
                                    "resource_type_discovery_failed",
                                    account_id=account.account_id,
                                    region=region,
                                    resource_type=resource_type,
                                    error=str(e),
                                )
                except Exception as e:
                    logger.error(
                        "resource_discovery_failed",
                        account_id=account.account_id,
                        region=region,
                        error=str(e),
                    )

        self._metrics = [build_family(RESOURCE_METRIC, samples)] if samples else []
        logger.info("resource_export_completed", resources=len(samples))

    def collect(self) -> Iterable[Metric]:
        return self._metrics
