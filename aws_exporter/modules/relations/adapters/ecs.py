from collections.abc import Iterable
from functools import partial
from typing import Any

import structlog
from prometheus_client.core import Metric

from aws_exporter.modules.relations.adapters.load_balancers import (
    ROUTES_TO,
    TargetGroupLBMapProvider,
)
from aws_exporter.modules.relations.adapters.region_scan import (
    retain_failed_scopes,
    scan_regions,
)
from aws_exporter.modules.resources.domain.mapper import ResourceMapper
from aws_exporter.modules.resources.domain.resource import ResourceRelation
from aws_exporter.shared.adapters.aws_pagination import iter_aws_pages
from aws_exporter.shared.adapters.aws_utils import (
    AccountProvider,
    AWSAccount,
    AWSClientProvider,
    call_labels,
)
from aws_exporter.shared.adapters.rate_limiter import RateLimiter

logger = structlog.get_logger()

# DescribeServices accepts at most this many services per call.
DESCRIBE_SERVICES_CHUNK = 10


class ECSServiceDiscoveryExporter:
    """`LoadBalancer ROUTES_TO ECSService` through the service's target groups."""

    def __init__(
        self,
        tg_map: TargetGroupLBMapProvider,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
        mapper: ResourceMapper | None = None,
    ):
        self.tg_map = tg_map
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self.mapper = mapper or ResourceMapper()
        self._relations: frozenset[ResourceRelation] = frozenset()

    @property
    def relations(self) -> frozenset[ResourceRelation]:
        return self._relations

    async def _list_arns(
        self, call: Any, operation: str, labels: dict[str, str], key: str, **request: Any
    ) -> list[str]:
        arns: list[str] = []
        pages = iter_aws_pages(
            self.rate_limiter,
            call,
            operation_name=operation,
            labels=labels,
            request=request,
            token_key="nextToken",
        )
        async for page in pages:
            arns.extend(page.get(key, []))
        return arns

    async def _fetch(self, account: AWSAccount, region: str) -> set[ResourceRelation]:
        relations: set[ResourceRelation] = set()
        labels = call_labels(account.account_id, region)
        async with self.client_provider.client("ecs", region, account) as client:
            clusters = await self._list_arns(
                client.list_clusters, "ECSClient/listClusters", labels, "clusterArns"
            )
            for cluster in clusters:
                services = await self._list_arns(
                    client.list_services,
                    "ECSClient/listServices",
                    labels,
                    "serviceArns",
                    cluster=cluster,
                )
                for start in range(0, len(services), DESCRIBE_SERVICES_CHUNK):
                    chunk = services[start:start + DESCRIBE_SERVICES_CHUNK]
                    response = await self.rate_limiter.execute(
                        "ECSClient/describeServices",
                        labels,
                        partial(client.describe_services, cluster=cluster, services=chunk),
                    )
                    for service in response.get("services", []):
                        service_resource = self.mapper.map(service.get("serviceArn"))
                        if service_resource is None:
                            continue
                        for lb_config in service.get("loadBalancers", []):
                            tg_arn = lb_config.get("targetGroupArn")
                            if not tg_arn:
                                continue
                            for lb in self.tg_map.load_balancers_for(tg_arn):
                                relations.add(
                                    ResourceRelation(
                                        from_=lb, to=service_resource, name=ROUTES_TO
                                    )
                                )
        return relations

    async def update(self) -> None:
        relations, failed = await scan_regions(
            await self.account_provider.get_accounts(), self._fetch, "lb_to_ecs_service"
        )
        self._relations = frozenset(
            relations | retain_failed_scopes(self._relations, failed)
        )

    def collect(self) -> Iterable[Metric]:
        return []
