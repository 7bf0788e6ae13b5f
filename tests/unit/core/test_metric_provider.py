from prometheus_client.core import Metric

from aws_exporter.shared.core.metric_provider import (
    MetricProvider,
    ProviderCollector,
    build_family,
)


class StaticProvider:
    def __init__(self, families):
        self.families = families

    async def update(self) -> None:
        pass

    def collect(self):
        return self.families


class BrokenProvider:
    async def update(self) -> None:
        pass

    def collect(self):
        raise RuntimeError("boom")


def test_build_family():
    family = build_family("aws_resource", [({"name": "a"}, 1.0), ({"name": "b"}, 1.0)])
    assert family.type == "gauge"
    assert [s.labels["name"] for s in family.samples] == ["a", "b"]


def test_families_with_same_name_are_merged():
    collector = ProviderCollector()
    collector.add(StaticProvider([build_family("aws_resource", [({"name": "a"}, 1.0)])]))
    collector.add(
        StaticProvider(
            [
                build_family("aws_resource", [({"name": "b"}, 1.0)]),
                build_family("aws_cloudwatch_alarm", [({"alarm_name": "x"}, 1.0)]),
            ]
        )
    )

    families = collector.collect()

    assert [f.name for f in families] == ["aws_cloudwatch_alarm", "aws_resource"]
    assert sorted(s.labels["name"] for s in families[1].samples) == ["a", "b"]


def test_add_is_idempotent_and_describe_is_empty():
    collector = ProviderCollector()
    provider = StaticProvider([])
    collector.add(provider)
    collector.add(provider)
    assert collector.providers == (provider,)
    assert collector.describe() == []


def test_failing_provider_is_skipped():
    collector = ProviderCollector()
    collector.add(BrokenProvider())
    collector.add(StaticProvider([Metric("aws_resource", "", "gauge")]))
    assert [f.name for f in collector.collect()] == ["aws_resource"]


def test_protocol_is_runtime_checkable():
    assert isinstance(StaticProvider([]), MetricProvider)
    assert not isinstance(object(), MetricProvider)
