"""
Shared label and metric names.

Every remote call is accounted under the same label set so the self-telemetry
families line up across exporters.
"""

# Label names
ACCOUNT_ID_LABEL = "account_id"
REGION_LABEL = "region"
OPERATION_LABEL = "operation"
NAMESPACE_LABEL = "namespace"
INTERVAL_LABEL = "interval"
JOB_LABEL = "job"

# Self-telemetry families
SCRAPE_LATENCY_METRIC = "aws_exporter_milliseconds"
SCRAPE_CALLS_METRIC = "aws_exporter_calls"

# Exported families
RESOURCE_METRIC = "aws_resource"
RESOURCE_RELATION_METRIC = "aws_resource_relation"
ALARM_METRIC = "aws_cloudwatch_alarm"
LAMBDA_EVENT_SOURCE_METRIC = "aws_lambda_event_source"
LAMBDA_ACCOUNT_LIMIT_METRIC = "aws_lambda_account_limit"
LAMBDA_AVAILABLE_CONCURRENCY_METRIC = "aws_lambda_available_concurrency"
LAMBDA_REQUESTED_CONCURRENCY_METRIC = "aws_lambda_requested_concurrency"
LAMBDA_ALLOCATED_CONCURRENCY_METRIC = "aws_lambda_allocated_concurrency"
LAMBDA_TIMEOUT_METRIC = "aws_lambda_timeout_seconds"

# Singleton task names
METRIC_QUERY_TASK = "metric_query_provider"
RESOURCE_TASK = "resource_exporter"
RELATION_TASK = "resource_relation_exporter"
ALARM_TASK = "alarm_fetcher"

# GetMetricData request ceilings
MAX_METRICS_PER_CALL = 500
MAX_DATAPOINTS_PER_CALL = 100_800
