from collections.abc import Iterable

import structlog
from prometheus_client.core import Metric

from aws_exporter.modules.relations.adapters.region_scan import (
    retain_failed_scopes,
    scan_regions,
)
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
from aws_exporter.shared.core.constants import (
    ACCOUNT_ID_LABEL,
    JOB_LABEL,
    NAMESPACE_LABEL,
    REGION_LABEL,
    RESOURCE_METRIC,
)
from aws_exporter.shared.core.metric_provider import build_family

logger = structlog.get_logger()

ATTACHED_TO = "ATTACHED_TO"


def _instance(account_id: str, region: str, instance_id: str) -> Resource:
    return Resource(
        type=ResourceType.EC2_INSTANCE,
        name=instance_id,
        region=region,
        account=account_id,
    )


class ENIToEC2RelationBuilder:
    """`NetworkInterface ATTACHED_TO EC2Instance`."""

    def __init__(
        self,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
    ):
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self._relations: frozenset[ResourceRelation] = frozenset()

    @property
    def relations(self) -> frozenset[ResourceRelation]:
        return self._relations

    async def _fetch(self, account: AWSAccount, region: str) -> set[ResourceRelation]:
        relations: set[ResourceRelation] = set()
        async with self.client_provider.client("ec2", region, account) as client:
            pages = iter_aws_pages(
                self.rate_limiter,
                client.describe_network_interfaces,
                operation_name="Ec2Client/describeNetworkInterfaces",
                labels=call_labels(account.account_id, region),
            )
            async for page in pages:
                for interface in page.get("NetworkInterfaces", []):
                    instance_id = interface.get("Attachment", {}).get("InstanceId")
                    if not instance_id:
                        continue
                    eni = Resource(
                        type=ResourceType.NETWORK_INTERFACE,
                        name=interface["NetworkInterfaceId"],
                        region=region,
                        account=account.account_id,
                    )
                    relations.add(
                        ResourceRelation(
                            from_=eni,
                            to=_instance(account.account_id, region, instance_id),
                            name=ATTACHED_TO,
                        )
                    )
        return relations

    async def update(self) -> None:
        relations, failed = await scan_regions(
            await self.account_provider.get_accounts(), self._fetch, "eni_to_ec2"
        )
        self._relations = frozenset(
            relations | retain_failed_scopes(self._relations, failed)
        )

    def collect(self) -> Iterable[Metric]:
        return []


class EC2ToEBSVolumeExporter:
    """
    `EBSVolume ATTACHED_TO EC2Instance`, plus an `aws_resource` sample for
    every instance that has a volume attached.
    """

    def __init__(
        self,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
    ):
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self._relations: frozenset[ResourceRelation] = frozenset()
        self._metrics: list[Metric] = []

    @property
    def relations(self) -> frozenset[ResourceRelation]:
        return self._relations

    async def _fetch(self, account: AWSAccount, region: str) -> set[ResourceRelation]:
        relations: set[ResourceRelation] = set()
        async with self.client_provider.client("ec2", region, account) as client:
            pages = iter_aws_pages(
                self.rate_limiter,
                client.describe_volumes,
                operation_name="Ec2Client/describeVolumes",
                labels=call_labels(account.account_id, region),
            )
            async for page in pages:
                for volume in page.get("Volumes", []):
                    for attachment in volume.get("Attachments", []):
                        volume_resource = Resource(
                            type=ResourceType.EBS_VOLUME,
                            name=attachment.get("VolumeId") or volume["VolumeId"],
                            region=region,
                            account=account.account_id,
                        )
                        relations.add(
                            ResourceRelation(
                                from_=volume_resource,
                                to=_instance(account.account_id, region, attachment["InstanceId"]),
                                name=ATTACHED_TO,
                            )
                        )
        return relations

    async def update(self) -> None:
        logger.info("ec2_ebs_volume_export_started")
        relations, failed = await scan_regions(
            await self.account_provider.get_accounts(), self._fetch, "ebs_to_ec2"
        )
        self._relations = frozenset(
            relations | retain_failed_scopes(self._relations, failed)
        )

        instances = sorted(
            {r.to for r in self._relations}, key=lambda i: (i.account, i.region, i.name)
        )
        samples = [
            (
                {
                    ACCOUNT_ID_LABEL: instance.account,
                    REGION_LABEL: instance.region,
                    "aws_resource_type": "AWS::EC2::Instance",
                    NAMESPACE_LABEL: "AWS/EC2",
                    "name": instance.name,
                    JOB_LABEL: instance.name,
                },
                1.0,
            )
            for instance in instances
        ]
        self._metrics = [build_family(RESOURCE_METRIC, samples)] if samples else []

    def collect(self) -> Iterable[Metric]:
        return self._metrics
