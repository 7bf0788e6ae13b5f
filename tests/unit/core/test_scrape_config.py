import json

import pytest
from pydantic import ValidationError

from aws_exporter.shared.core.exceptions import ConfigurationError
from aws_exporter.shared.core.scrape_config import (
    NamespaceConfig,
    ScrapeConfig,
    ScrapeConfigProvider,
    Stat,
)

VALID = {
    "regions": ["us-west-2", "us-east-1", "us-east-1"],
    "scrapeInterval": 60,
    "namespaces": [
        {
            "name": "AWS/Lambda",
            "period": 60,
            "metrics": [
                {"name": "Invocations", "stats": ["Sum"]},
                {"name": "Duration", "stats": ["Average"], "scrapeInterval": 300},
            ],
        }
    ],
}


def _write(tmp_path, payload) -> str:
    path = tmp_path / "scrape_config.json"
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload))
    return str(path)


def test_regions_deduplicated_and_sorted():
    config = ScrapeConfig.model_validate(VALID)
    assert config.regions == ["us-east-1", "us-west-2"]


def test_camel_and_snake_case_keys():
    camel = ScrapeConfig.model_validate({"numTaskThreads": 3, "pullCwAlarms": False})
    snake = ScrapeConfig.model_validate({"num_task_threads": 3, "pull_cw_alarms": False})
    assert camel.num_task_threads == snake.num_task_threads == 3
    assert camel.pull_cw_alarms is snake.pull_cw_alarms is False


def test_intervals_and_periods_resolve_through_levels():
    config = ScrapeConfig.model_validate(VALID)
    ns = config.namespaces[0]
    invocations, duration = ns.metrics
    assert config.interval_of(ns, invocations) == 60
    assert config.interval_of(ns, duration) == 300
    assert config.period_of(ns, duration) == 60
    assert config.intervals() == [60, 300]
    assert invocations.stats == [Stat.SUM]


@pytest.mark.parametrize("period", [1, 5, 10, 30, 60, 300])
def test_valid_periods(period):
    ScrapeConfig.model_validate(
        {"namespaces": [{"name": "AWS/SQS", "period": period, "metrics": [{"name": "X"}]}]}
    )


def test_invalid_period_rejected():
    with pytest.raises(ValidationError):
        ScrapeConfig.model_validate(
            {"namespaces": [{"name": "AWS/SQS", "period": 45, "metrics": [{"name": "X"}]}]}
        )


def test_invalid_regex_rejected():
    with pytest.raises(ValidationError):
        NamespaceConfig.model_validate({"name": "AWS/SQS", "dimensionFilters": {"QueueName": "("}})


def test_dimension_filters_require_every_dimension():
    ns = NamespaceConfig.model_validate(
        {"name": "AWS/SQS", "dimensionFilters": {"QueueName": "prod-.*"}}
    )
    assert ns.matches_dimensions({"QueueName": "prod-orders"})
    assert not ns.matches_dimensions({"QueueName": "dev-orders"})
    assert not ns.matches_dimensions({})
    # fullmatch, not search
    assert not ns.matches_dimensions({"QueueName": "xprod-orders"})


def test_account_id_must_be_twelve_digits():
    with pytest.raises(ValidationError):
        ScrapeConfig.model_validate({"accounts": [{"accountId": "1234"}]})


def test_provider_loads_file(tmp_path):
    provider = ScrapeConfigProvider(_write(tmp_path, VALID))
    config = provider.load()
    assert provider.get_scrape_config() is config
    assert config.namespaces[0].name == "AWS/Lambda"


def test_provider_raises_configuration_error_for_missing_file(tmp_path):
    provider = ScrapeConfigProvider(str(tmp_path / "missing.json"))
    with pytest.raises(ConfigurationError) as exc_info:
        provider.load()
    assert exc_info.value.code == "config_error"


def test_provider_raises_configuration_error_for_malformed_json(tmp_path):
    provider = ScrapeConfigProvider(_write(tmp_path, "{not json"))
    with pytest.raises(ConfigurationError):
        provider.load()


def test_refresh_keeps_last_good_config(tmp_path):
    path = _write(tmp_path, VALID)
    provider = ScrapeConfigProvider(path)
    good = provider.load()

    _write(tmp_path, {"scrapeInterval": -1})
    assert provider.refresh() is good


def test_refresh_without_previous_config_raises(tmp_path):
    provider = ScrapeConfigProvider(_write(tmp_path, "[]"))
    with pytest.raises(ConfigurationError):
        provider.refresh()
