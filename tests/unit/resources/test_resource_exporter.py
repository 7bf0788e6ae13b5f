import pytest

from aws_exporter.modules.resources.adapters.lambda_event_sources import (
    LambdaEventSourceExporter,
)
from aws_exporter.modules.resources.adapters.resource_exporter import (
    ResourceExporter,
    basic_resource_labels,
)
from aws_exporter.modules.resources.domain.mapper import ResourceMapper
from aws_exporter.shared.adapters.aws_utils import AWSAccount

from conftest import (
    ACCOUNT_A,
    make_account_provider,
    make_client,
    make_client_provider,
    make_config_provider,
)

mapper = ResourceMapper()


def test_basic_labels_for_load_balancer_arn():
    arn = "arn:aws:elasticloadbalancing:us-east-1:123456789012:loadbalancer/app/front/50dc6c495c0c9188"
    labels = basic_resource_labels(
        "us-east-1",
        ACCOUNT_A,
        "AWS::ElasticLoadBalancingV2::LoadBalancer",
        arn,
        "front",
        mapper.map(arn),
    )
    assert labels["type"] == "app"
    assert labels["id"] == "50dc6c495c0c9188"
    assert labels["name"] == "front"
    assert labels["job"] == "front"


def test_basic_labels_for_ecs_service_carry_cluster():
    arn = "arn:aws:ecs:us-east-1:123456789012:service/payments/api"
    labels = basic_resource_labels(
        "us-east-1", ACCOUNT_A, "AWS::ECS::Service", arn, None, mapper.map(arn)
    )
    assert labels["cluster"] == "payments"
    assert labels["job"] == "api"
    assert "id" not in labels


def test_basic_labels_drop_url_ids():
    labels = basic_resource_labels(
        "us-east-1",
        ACCOUNT_A,
        "AWS::SQS::Queue",
        "https://sqs.us-east-1.amazonaws.com/123456789012/orders",
        "orders",
        None,
    )
    assert "id" not in labels
    assert labels["job"] == "orders"


@pytest.mark.asyncio
async def test_resource_exporter_isolates_failing_type(rate_limiter):
    page = {
        "resourceIdentifiers": [
            {
                "resourceType": "AWS::Lambda::Function",
                "resourceId": "checkout",
                "resourceName": "checkout",
            }
        ]
    }

    async def _list(**kwargs):
        if kwargs["resourceType"] == "AWS::SQS::Queue":
            raise RuntimeError("config not recording")
        return page

    client = make_client()
    client.list_discovered_resources.side_effect = _list
    exporter = ResourceExporter(
        make_config_provider(
            regions=["us-east-1"],
            discoverResourceTypes=["AWS::SQS::Queue", "AWS::Lambda::Function"],
        ),
        make_account_provider(AWSAccount(ACCOUNT_A, ("us-east-1",))),
        make_client_provider({(ACCOUNT_A, "us-east-1"): client}),
        rate_limiter,
    )

    await exporter.update()

    families = list(exporter.collect())
    assert [f.name for f in families] == ["aws_resource"]
    assert len(families[0].samples) == 1
    assert families[0].samples[0].labels["aws_resource_type"] == "AWS::Lambda::Function"


@pytest.mark.asyncio
async def test_lambda_event_sources_follow_markers(rate_limiter):
    function_arn = "arn:aws:lambda:us-east-1:123456789012:function:consumer"
    client = make_client(
        list_event_source_mappings=[
            {
                "EventSourceMappings": [
                    {
                        "FunctionArn": function_arn,
                        "EventSourceArn": "arn:aws:sqs:us-east-1:123456789012:orders",
                    }
                ],
                "NextMarker": "m1",
            },
            {
                "EventSourceMappings": [
                    {
                        "FunctionArn": function_arn,
                        "EventSourceArn": "arn:aws:kinesis:us-east-1:123456789012:stream/clicks",
                    }
                ]
            },
        ]
    )
    exporter = LambdaEventSourceExporter(
        make_config_provider(
            regions=["us-east-1"],
            namespaces=[{"name": "AWS/Lambda", "metrics": [{"name": "Invocations"}]}],
        ),
        make_account_provider(AWSAccount(ACCOUNT_A, ("us-east-1",))),
        make_client_provider({(ACCOUNT_A, "us-east-1"): client}),
        rate_limiter,
    )

    await exporter.update()

    assert client.list_event_source_mappings.await_args_list[1].kwargs == {"Marker": "m1"}
    family = list(exporter.collect())[0]
    assert family.name == "aws_lambda_event_source"
    sources = sorted(s.labels["event_source_name"] for s in family.samples)
    assert sources == ["clicks", "orders"]
    assert all(s.labels["lambda_function"] == "consumer" for s in family.samples)


@pytest.mark.asyncio
async def test_lambda_event_sources_skipped_without_lambda_namespace(rate_limiter):
    client = make_client(list_event_source_mappings={"EventSourceMappings": []})
    exporter = LambdaEventSourceExporter(
        make_config_provider(regions=["us-east-1"]),
        make_account_provider(AWSAccount(ACCOUNT_A, ("us-east-1",))),
        make_client_provider({(ACCOUNT_A, "us-east-1"): client}),
        rate_limiter,
    )

    await exporter.update()

    client.list_event_source_mappings.assert_not_awaited()
    assert list(exporter.collect()) == []
