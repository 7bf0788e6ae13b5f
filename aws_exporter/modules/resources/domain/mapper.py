"""
ARN parser.

`RESOURCE_RULES` is an ordered table; the first pattern that matches wins.
Each pattern exposes named groups that map straight onto `Resource` fields:

    region, account, name, id, sub_type, version
    parent   name of the owning resource, built as `Resource(parent_type, ...)`

Compound identifiers (a DynamoDB stream, an S3 object key) are handled by the
pattern only capturing the part that names the resource.
"""

import re
from dataclasses import dataclass
from typing import Optional

from aws_exporter.modules.resources.domain.resource import Resource, ResourceType

_PREFIX = r"^arn:aws[\w-]*:"
_REGION_ACCOUNT = r"(?P<region>[^:]*):(?P<account>\d*):"


@dataclass(frozen=True)
class ArnRule:
    type: ResourceType
    pattern: re.Pattern[str]
    parent_type: Optional[ResourceType] = None


def _rule(
    resource_type: ResourceType,
    service: str,
    specifier: str,
    parent_type: Optional[ResourceType] = None,
) -> ArnRule:
    pattern = re.compile(_PREFIX + service + ":" + _REGION_ACCOUNT + specifier + "$")
    return ArnRule(resource_type, pattern, parent_type)


RESOURCE_RULES: tuple[ArnRule, ...] = (
    _rule(ResourceType.SQS_QUEUE, "sqs", r"(?P<name>[^:/]+)"),
    # table/<name>[/stream/<timestamp> | /index/<index>]
    _rule(ResourceType.DYNAMODB_TABLE, "dynamodb", r"table/(?P<name>[^/]+)(?:/.*)?"),
    # function:<name>[:<qualifier>]; the qualifier is not part of the identity
    _rule(ResourceType.LAMBDA_FUNCTION, "lambda", r"function:(?P<name>[^:]+)(?::[^:]+)?"),
    _rule(ResourceType.S3_BUCKET, "s3", r"(?P<name>[^:/]+)(?:/.*)?"),
    _rule(ResourceType.SNS_TOPIC, "sns", r"(?P<name>[^:/]+)"),
    _rule(ResourceType.EVENT_BUS, "events", r"event-bus/(?P<name>[^/]+)"),
    _rule(ResourceType.ECS_CLUSTER, "ecs", r"cluster/(?P<name>[^/]+)"),
    _rule(
        ResourceType.ECS_SERVICE,
        "ecs",
        r"service/(?:(?P<parent>[^/]+)/)?(?P<name>[^/]+)",
        parent_type=ResourceType.ECS_CLUSTER,
    ),
    _rule(
        ResourceType.ECS_TASK_DEF,
        "ecs",
        r"task-definition/(?P<name>[^:/]+):(?P<version>\d+)",
    ),
    _rule(ResourceType.ECS_TASK, "ecs", r"task/(?:[^/]+/)?(?P<name>[^/]+)"),
    _rule(
        ResourceType.LOAD_BALANCER,
        "elasticloadbalancing",
        r"loadbalancer/(?:(?P<sub_type>app|net|gwy)/)?(?P<name>[^/]+)(?:/(?P<id>[^/]+))?",
    ),
    _rule(
        ResourceType.TARGET_GROUP,
        "elasticloadbalancing",
        r"targetgroup/(?P<name>[^/]+)/(?P<id>[^/]+)",
    ),
    _rule(
        ResourceType.AUTO_SCALING_GROUP,
        "autoscaling",
        r"autoScalingGroup:(?P<id>[^:]+):autoScalingGroupName/(?P<name>.+)",
    ),
    _rule(ResourceType.EC2_INSTANCE, "ec2", r"instance/(?P<name>[^/]+)"),
    _rule(ResourceType.EBS_VOLUME, "ec2", r"volume/(?P<name>[^/]+)"),
    _rule(ResourceType.NETWORK_INTERFACE, "ec2", r"network-interface/(?P<name>[^/]+)"),
    _rule(ResourceType.KINESIS_STREAM, "kinesis", r"stream/(?P<name>[^/]+)"),
    _rule(
        ResourceType.KINESIS_ANALYTICS,
        "kinesisanalytics",
        r"application/(?P<name>[^/]+)",
    ),
    _rule(ResourceType.FIREHOSE, "firehose", r"deliverystream/(?P<name>[^/]+)"),
    # the ARN carries the REST API id only; `name` falls back to it
    _rule(ResourceType.API_GATEWAY, "apigateway", r"/restapis/(?P<id>[^/]+)(?:/.*)?"),
    _rule(ResourceType.RDS_INSTANCE, "rds", r"db:(?P<name>[^:]+)"),
)


class ResourceMapper:
    """Maps ARNs to `Resource`s. Pure: no caching, no I/O, no logging."""

    def __init__(self, rules: tuple[ArnRule, ...] = RESOURCE_RULES):
        self.rules = rules

    def map(self, arn: Optional[str]) -> Optional[Resource]:
        if not arn or not arn.startswith("arn:"):
            return None
        for rule in self.rules:
            match = rule.pattern.match(arn)
            if match is None:
                continue
            fields = match.groupdict()
            region = fields["region"] or ""
            account = fields["account"] or ""
            parent = None
            if rule.parent_type is not None and fields.get("parent"):
                parent = Resource(
                    type=rule.parent_type,
                    name=fields["parent"],
                    region=region,
                    account=account,
                )
            return Resource(
                type=rule.type,
                name=fields.get("name") or fields["id"],
                region=region,
                account=account,
                arn=arn,
                id=fields.get("id"),
                sub_type=fields.get("sub_type"),
                version=fields.get("version"),
                child_of=parent,
            )
        return None
