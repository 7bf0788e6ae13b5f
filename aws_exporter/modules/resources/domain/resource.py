from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ResourceType(str, Enum):
    ECS_CLUSTER = "ECSCluster"
    ECS_SERVICE = "ECSService"
    ECS_TASK_DEF = "ECSTaskDef"
    ECS_TASK = "ECSTask"
    SNS_TOPIC = "SNSTopic"
    EVENT_BUS = "EventBus"
    SQS_QUEUE = "SQSQueue"
    DYNAMODB_TABLE = "DynamoDBTable"
    LAMBDA_FUNCTION = "LambdaFunction"
    S3_BUCKET = "S3Bucket"
    LOAD_BALANCER = "LoadBalancer"
    TARGET_GROUP = "TargetGroup"
    AUTO_SCALING_GROUP = "AutoScalingGroup"
    EC2_INSTANCE = "EC2Instance"
    EBS_VOLUME = "EBSVolume"
    NETWORK_INTERFACE = "NetworkInterface"
    KINESIS_STREAM = "KinesisDataStream"
    KINESIS_ANALYTICS = "KinesisAnalytics"
    FIREHOSE = "KinesisDataFirehose"
    API_GATEWAY = "ApiGateway"
    RDS_INSTANCE = "RDSInstance"


@dataclass(frozen=True)
class Resource:
    """
    Identity of one AWS resource. Structural equality and hashing, so it can
    be used as a set element or dict key.
    """

    type: ResourceType
    name: str
    region: str = ""
    account: str = ""
    arn: str = ""
    id: Optional[str] = None
    sub_type: Optional[str] = None
    version: Optional[str] = None
    child_of: Optional["Resource"] = None

    def labels(self, prefix: str = "") -> dict[str, str]:
        p = f"{prefix}_" if prefix else ""
        labels = {
            f"{p}account": self.account,
            f"{p}region": self.region,
            f"{p}type": self.type.value,
            f"{p}name": self.name,
        }
        if self.id:
            labels[f"{p}id"] = self.id
        return labels


@dataclass(frozen=True)
class ResourceRelation:
    from_: Resource
    to: Resource
    name: str

    def labels(self) -> dict[str, str]:
        return {
            **self.from_.labels("from"),
            **self.to.labels("to"),
            "rel_name": self.name,
        }
