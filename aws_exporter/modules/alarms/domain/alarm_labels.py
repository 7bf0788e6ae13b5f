import re
from enum import Enum
from typing import Any, Optional

from aws_exporter.shared.core.constants import (
    ACCOUNT_ID_LABEL,
    NAMESPACE_LABEL,
    REGION_LABEL,
)


class ComparisonOperator(str, Enum):
    GREATER_THAN_OR_EQUAL_TO_THRESHOLD = "GreaterThanOrEqualToThreshold"
    GREATER_THAN_THRESHOLD = "GreaterThanThreshold"
    LESS_THAN_THRESHOLD = "LessThanThreshold"
    LESS_THAN_OR_EQUAL_TO_THRESHOLD = "LessThanOrEqualToThreshold"
    LESS_THAN_LOWER_OR_GREATER_THAN_UPPER_THRESHOLD = "LessThanLowerOrGreaterThanUpperThreshold"
    LESS_THAN_LOWER_THRESHOLD = "LessThanLowerThreshold"
    GREATER_THAN_UPPER_THRESHOLD = "GreaterThanUpperThreshold"


OPERATOR_SYMBOLS: dict[ComparisonOperator, str] = {
    ComparisonOperator.LESS_THAN_THRESHOLD: "<",
    ComparisonOperator.LESS_THAN_LOWER_THRESHOLD: "<",
    ComparisonOperator.GREATER_THAN_THRESHOLD: ">",
    ComparisonOperator.GREATER_THAN_UPPER_THRESHOLD: ">",
    ComparisonOperator.LESS_THAN_OR_EQUAL_TO_THRESHOLD: "<=",
    ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD: ">=",
    ComparisonOperator.LESS_THAN_LOWER_OR_GREATER_THAN_UPPER_THRESHOLD: "> or <",
}


def operator_symbol(operator: Optional[str]) -> str:
    """Symbol for a CloudWatch comparison operator; empty when unknown."""
    if not operator:
        return ""
    try:
        return OPERATOR_SYMBOLS[ComparisonOperator(operator)]
    except ValueError:
        return ""


_NON_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_]+")


class AlarmMetricConverter:
    def simplify_alarm_name(self, labels: dict[str, str]) -> dict[str, str]:
        """
        Derive `alertname` from `alarm_name`: runs of characters outside
        `[a-zA-Z0-9_]` become one underscore. The raw name stays in
        `alarm_name`.
        """
        alarm_name = labels.get("alarm_name")
        if alarm_name:
            labels["alertname"] = _NON_NAME_CHARS.sub("_", alarm_name).strip("_") or alarm_name
        return labels


def alarm_labels(alarm: dict[str, Any], account_id: str, region: str) -> dict[str, str]:
    """Label map of one `MetricAlarm` from DescribeAlarms."""
    namespace = alarm.get("Namespace", "")
    labels = {
        REGION_LABEL: region,
        ACCOUNT_ID_LABEL: account_id,
        "state": alarm.get("StateValue", ""),
        "threshold": str(float(alarm.get("Threshold", 0.0))),
        NAMESPACE_LABEL: namespace,
        "metric_namespace": namespace,
        "alarm_name": alarm.get("AlarmName", ""),
    }
    if alarm.get("MetricName"):
        labels["metric_name"] = alarm["MetricName"]
    if alarm.get("ComparisonOperator"):
        labels["metric_operator"] = operator_symbol(alarm["ComparisonOperator"])
    for dimension in alarm.get("Dimensions", []):
        labels["d_" + dimension["Name"]] = dimension["Value"]
    updated = alarm.get("StateUpdatedTimestamp")
    if updated is not None:
        labels["timestamp"] = updated.isoformat() if hasattr(updated, "isoformat") else str(updated)
    return labels
