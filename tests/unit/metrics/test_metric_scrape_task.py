from unittest.mock import MagicMock

import pytest

from aws_exporter.modules.metrics.adapters.scrape_task import MetricScrapeTask
from aws_exporter.modules.metrics.domain.query import MetricQuery
from aws_exporter.shared.adapters.aws_utils import AWSAccount
from aws_exporter.shared.core.scrape_config import Stat

from conftest import (
    ACCOUNT_A,
    ACCOUNT_B,
    make_account_provider,
    make_client,
    make_client_provider,
)

REGION = "us-east-1"


def _query(qid: str, function: str) -> MetricQuery:
    return MetricQuery(
        id=qid,
        namespace="AWS/Lambda",
        metric_name="Invocations",
        dimensions=(("FunctionName", function),),
        stat=Stat.SUM,
        period=60,
        scrape_interval=60,
    )


def _query_provider(queries_by_account: dict[str, tuple[MetricQuery, ...]]) -> MagicMock:
    provider = MagicMock()
    provider.queries_for.side_effect = (
        lambda account_id, region, interval: queries_by_account.get(account_id, ())
    )
    return provider


def _result(qid: str, value: float) -> dict:
    return {"Id": qid, "Timestamps": [1_700_000_000.0], "Values": [value]}


def _task(clients, queries, rate_limiter, accounts=None, delay=0):
    return MetricScrapeTask(
        REGION,
        60,
        delay,
        _query_provider(queries),
        make_account_provider(
            *(accounts or [AWSAccount(ACCOUNT_A, (REGION,)), AWSAccount(ACCOUNT_B, (REGION,))])
        ),
        make_client_provider(clients),
        rate_limiter,
    )


@pytest.mark.asyncio
async def test_failing_account_does_not_affect_others(rate_limiter):
    clients = {
        (ACCOUNT_A, REGION): make_client(get_metric_data=RuntimeError("AccessDenied")),
        (ACCOUNT_B, REGION): make_client(
            get_metric_data={"MetricDataResults": [_result("q_1", 7.0)]}
        ),
    }
    task = _task(
        clients,
        {ACCOUNT_A: (_query("q_1", "a"),), ACCOUNT_B: (_query("q_1", "b"),)},
        rate_limiter,
    )

    families = await task.scrape(now=1_700_000_060.0)

    assert [f.name for f in families] == ["aws_lambda_invocations_sum"]
    samples = families[0].samples
    assert len(samples) == 1
    assert samples[0].labels["account_id"] == ACCOUNT_B
    assert samples[0].labels["d_function_name"] == "b"
    assert samples[0].value == 7.0


@pytest.mark.asyncio
async def test_time_window_and_pagination(rate_limiter):
    client = make_client(
        get_metric_data=[
            {"MetricDataResults": [_result("q_1", 1.0)], "NextToken": "t1"},
            {"MetricDataResults": [_result("q_2", 2.0), _result("zzz", 9.0)]},
        ]
    )
    task = _task(
        {(ACCOUNT_A, REGION): client},
        {ACCOUNT_A: (_query("q_1", "a"), _query("q_2", "b"))},
        rate_limiter,
        accounts=[AWSAccount(ACCOUNT_A, (REGION,))],
        delay=120,
    )

    families = await task.scrape(now=1_700_000_120.0)

    first_call = client.get_metric_data.await_args_list[0].kwargs
    assert first_call["EndTime"].timestamp() == 1_700_000_000.0
    assert first_call["StartTime"].timestamp() == 1_700_000_000.0 - 60
    assert len(first_call["MetricDataQueries"]) == 2
    assert client.get_metric_data.await_args_list[1].kwargs["NextToken"] == "t1"

    values = sorted(s.value for f in families for s in f.samples)
    assert values == [1.0, 2.0]


@pytest.mark.asyncio
async def test_scrape_throttles_within_interval(rate_limiter):
    client = make_client(get_metric_data={"MetricDataResults": [_result("q_1", 1.0)]})
    task = _task(
        {(ACCOUNT_A, REGION): client},
        {ACCOUNT_A: (_query("q_1", "a"),)},
        rate_limiter,
        accounts=[AWSAccount(ACCOUNT_A, (REGION,))],
    )

    first = await task.scrape(now=1000.0)
    assert first
    assert await task.scrape(now=1030.0) == []
    # Within the one second scheduling tolerance counts as a full interval.
    assert await task.scrape(now=1059.5) != []
    assert client.get_metric_data.await_count == 2


@pytest.mark.asyncio
async def test_update_keeps_snapshot_when_throttled(rate_limiter):
    clock_values = iter([1000.0, 1010.0])
    client = make_client(get_metric_data={"MetricDataResults": [_result("q_1", 1.0)]})
    task = _task(
        {(ACCOUNT_A, REGION): client},
        {ACCOUNT_A: (_query("q_1", "a"),)},
        rate_limiter,
        accounts=[AWSAccount(ACCOUNT_A, (REGION,))],
    )
    task.clock = lambda: next(clock_values)

    await task.update()
    snapshot = list(task.collect())
    await task.update()

    assert list(task.collect()) == snapshot
    assert len(snapshot) == 1


@pytest.mark.asyncio
async def test_accounts_without_region_or_queries_are_skipped(rate_limiter):
    client = make_client(get_metric_data={"MetricDataResults": []})
    task = _task(
        {(ACCOUNT_A, REGION): client},
        {},
        rate_limiter,
        accounts=[AWSAccount(ACCOUNT_A, (REGION,)), AWSAccount(ACCOUNT_B, ("eu-west-1",))],
    )

    assert await task.scrape(now=1000.0) == []
    client.get_metric_data.assert_not_awaited()
