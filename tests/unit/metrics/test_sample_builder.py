from datetime import datetime, timezone

from aws_exporter.modules.metrics.domain.query import MetricQuery
from aws_exporter.modules.metrics.domain.sample_builder import (
    MetricSampleBuilder,
    metric_name,
    metric_prefix,
    to_snake_case,
)
from aws_exporter.shared.core.scrape_config import Stat


def _query(**overrides) -> MetricQuery:
    fields = dict(
        id="q_1",
        namespace="AWS/SQS",
        metric_name="ApproximateNumberOfMessagesVisible",
        dimensions=(("QueueName", "orders"),),
        stat=Stat.MAXIMUM,
        period=60,
        scrape_interval=60,
    )
    fields.update(overrides)
    return MetricQuery(**fields)


def test_snake_case():
    assert to_snake_case("ConcurrentExecutions") == "concurrent_executions"
    assert to_snake_case("CPUUtilization") == "cpu_utilization"
    assert to_snake_case("Http-5XX Count") == "http_5_xx_count"


def test_metric_names():
    assert metric_prefix("AWS/Lambda") == "aws_lambda"
    assert metric_prefix("AWS/ApplicationELB") == "aws_applicationelb"
    assert metric_name(_query()) == "aws_sqs_approximate_number_of_messages_visible_max"


def test_labels_include_dimensions_and_job_from_arn():
    builder = MetricSampleBuilder()
    query = _query(
        namespace="AWS/Events",
        metric_name="Invocations",
        dimensions=(
            ("EventBusName", "default"),
            ("RuleName", "arn:aws:sqs:us-east-1:123456789012:orders"),
        ),
    )

    labels = builder.labels_for("us-east-1", "123456789012", query)

    assert labels == {
        "region": "us-east-1",
        "account_id": "123456789012",
        "namespace": "AWS/Events",
        "d_event_bus_name": "default",
        "d_rule_name": "arn:aws:sqs:us-east-1:123456789012:orders",
        "job": "orders",
    }


def test_one_sample_per_datapoint_with_timestamp():
    builder = MetricSampleBuilder()
    t1 = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)
    t2 = datetime(2024, 1, 1, 0, 1, tzinfo=timezone.utc)

    samples = builder.build_samples(
        "us-east-1",
        "123456789012",
        _query(),
        {"Id": "q_1", "Timestamps": [t1, t2], "Values": [3, 4.5]},
    )

    assert [(s.value, s.timestamp) for s in samples] == [
        (3.0, t1.timestamp()),
        (4.5, t2.timestamp()),
    ]
    assert samples[0].labels["d_queue_name"] == "orders"


def test_families_grouped_and_sorted():
    builder = MetricSampleBuilder()
    now = datetime.now(timezone.utc)
    samples = builder.build_samples(
        "us-east-1", "1", _query(stat=Stat.SUM), {"Timestamps": [now], "Values": [1]}
    ) + builder.build_samples(
        "us-east-1", "1", _query(stat=Stat.AVERAGE), {"Timestamps": [now], "Values": [2]}
    ) + builder.build_samples(
        "us-east-1", "2", _query(stat=Stat.SUM), {"Timestamps": [now], "Values": [3]}
    )

    families = builder.build_families(samples)

    assert [f.name for f in families] == [
        "aws_sqs_approximate_number_of_messages_visible_avg",
        "aws_sqs_approximate_number_of_messages_visible_sum",
    ]
    assert families[0].type == "gauge"
    assert len(families[1].samples) == 2
