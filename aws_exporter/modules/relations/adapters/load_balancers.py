"""
Load balancer routing edges.

`TargetGroupLBMapProvider` resolves target groups to the load balancers
that forward to them; the two builders below use that map to turn target
group membership into `LB ROUTES_TO <compute>` edges.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from functools import partial
from types import MappingProxyType
from typing import Mapping

import structlog
from prometheus_client.core import Metric

from aws_exporter.modules.relations.adapters.region_scan import (
    Scope,
    retain_failed_scopes,
    scan_regions,
)
from aws_exporter.modules.resources.domain.mapper import ResourceMapper
from aws_exporter.modules.resources.domain.resource import (
    Resource,
    ResourceRelation,
    ResourceType,
)
from aws_exporter.shared.adapters.aws_pagination import iter_aws_pages
from aws_exporter.shared.adapters.aws_utils import (
    AccountProvider,
    AWSAccount,
    AWSClientProvider,
    call_labels,
)
from aws_exporter.shared.adapters.rate_limiter import RateLimiter

logger = structlog.get_logger()

ROUTES_TO = "ROUTES_TO"


@dataclass(frozen=True)
class TargetGroup:
    resource: Resource
    load_balancer: Resource
    target_type: str


class TargetGroupLBMapProvider:
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
        self._by_arn: Mapping[str, tuple[TargetGroup, ...]] = MappingProxyType({})

    def load_balancers_for(self, target_group_arn: str) -> tuple[Resource, ...]:
        return tuple(tg.load_balancer for tg in self._by_arn.get(target_group_arn, ()))

    def target_groups(self, scope: Scope | None = None) -> list[TargetGroup]:
        groups = [tg for tgs in self._by_arn.values() for tg in tgs]
        if scope is None:
            return groups
        return [
            tg
            for tg in groups
            if (tg.resource.account, tg.resource.region) == scope
        ]

    async def _describe(self, account: AWSAccount, region: str) -> dict[str, list[TargetGroup]]:
        found: dict[str, list[TargetGroup]] = {}
        async with self.client_provider.client("elbv2", region, account) as client:
            pages = iter_aws_pages(
                self.rate_limiter,
                client.describe_target_groups,
                operation_name="ElasticLoadBalancingV2Client/describeTargetGroups",
                labels=call_labels(account.account_id, region),
                token_key="Marker",
                response_token_key="NextMarker",
            )
            async for page in pages:
                for group in page.get("TargetGroups", []):
                    tg_arn = group.get("TargetGroupArn", "")
                    tg_resource = self.mapper.map(tg_arn)
                    if tg_resource is None:
                        continue
                    for lb_arn in group.get("LoadBalancerArns", []):
                        lb_resource = self.mapper.map(lb_arn)
                        if lb_resource is None:
                            continue
                        found.setdefault(tg_arn, []).append(
                            TargetGroup(
                                resource=tg_resource,
                                load_balancer=lb_resource,
                                target_type=group.get("TargetType", "instance"),
                            )
                        )
        return found

    async def update(self) -> None:
        previous = self._by_arn
        refreshed: dict[str, tuple[TargetGroup, ...]] = {}
        for account in await self.account_provider.get_accounts():
            for region in account.regions:
                try:
                    for arn, groups in (await self._describe(account, region)).items():
                        refreshed[arn] = tuple(groups)
                except Exception as e:
                    logger.error(
                        "target_group_discovery_failed",
                        account_id=account.account_id,
                        region=region,
                        error=str(e),
                    )
                    for arn, groups in previous.items():
                        if any(
                            (g.resource.account, g.resource.region)
                            == (account.account_id, region)
                            for g in groups
                        ):
                            refreshed[arn] = groups
        self._by_arn = MappingProxyType(refreshed)
        logger.info("target_groups_mapped", target_groups=len(refreshed))

    def collect(self) -> Iterable[Metric]:
        return []


class LBToASGRelationBuilder:
    """`LoadBalancer ROUTES_TO AutoScalingGroup` via the group's target groups."""

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

    async def _fetch(self, account: AWSAccount, region: str) -> set[ResourceRelation]:
        relations: set[ResourceRelation] = set()
        async with self.client_provider.client("autoscaling", region, account) as client:
            pages = iter_aws_pages(
                self.rate_limiter,
                client.describe_auto_scaling_groups,
                operation_name="AutoScalingClient/describeAutoScalingGroups",
                labels=call_labels(account.account_id, region),
            )
            async for page in pages:
                for group in page.get("AutoScalingGroups", []):
                    asg = self.mapper.map(group.get("AutoScalingGroupARN")) or Resource(
                        type=ResourceType.AUTO_SCALING_GROUP,
                        name=group["AutoScalingGroupName"],
                        region=region,
                        account=account.account_id,
                    )
                    for tg_arn in group.get("TargetGroupARNs", []):
                        for lb in self.tg_map.load_balancers_for(tg_arn):
                            relations.add(ResourceRelation(from_=lb, to=asg, name=ROUTES_TO))
        return relations

    async def update(self) -> None:
        relations, failed = await scan_regions(
            await self.account_provider.get_accounts(), self._fetch, "lb_to_asg"
        )
        self._relations = frozenset(
            relations | retain_failed_scopes(self._relations, failed)
        )

    def collect(self) -> Iterable[Metric]:
        return []


class LBToLambdaRoutingBuilder:
    """`LoadBalancer ROUTES_TO LambdaFunction` via lambda target group health."""

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

    async def get_routings(self, account: AWSAccount, region: str) -> set[ResourceRelation]:
        groups = [
            tg
            for tg in self.tg_map.target_groups((account.account_id, region))
            if tg.target_type == "lambda"
        ]
        if not groups:
            return set()

        relations: set[ResourceRelation] = set()
        async with self.client_provider.client("elbv2", region, account) as client:
            for tg in groups:
                response = await self.rate_limiter.execute(
                    "ElasticLoadBalancingV2Client/describeTargetHealth",
                    call_labels(account.account_id, region),
                    partial(client.describe_target_health, TargetGroupArn=tg.resource.arn),
                )
                for description in response.get("TargetHealthDescriptions", []):
                    target = self.mapper.map(description.get("Target", {}).get("Id"))
                    if target is not None and target.type == ResourceType.LAMBDA_FUNCTION:
                        relations.add(
                            ResourceRelation(from_=tg.load_balancer, to=target, name=ROUTES_TO)
                        )
        return relations

    async def update(self) -> None:
        relations, failed = await scan_regions(
            await self.account_provider.get_accounts(), self.get_routings, "lb_to_lambda"
        )
        self._relations = frozenset(
            relations | retain_failed_scopes(self._relations, failed)
        )

    def collect(self) -> Iterable[Metric]:
        return []
