"""
Tests for ScrapeTaskManager

Tests cover:
- Clock alignment of the first fire
- Idempotent registration
- Task setup from configuration
- Failure accounting of scheduled runs
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import REGISTRY

from aws_exporter.services.scheduler.task_manager import (
    ClockAlignment,
    ScheduledTask,
    ScrapeTaskManager,
    first_fire_delay_millis,
    task_id,
)
from aws_exporter.shared.adapters.aws_utils import AWSAccount
from aws_exporter.shared.core.metric_provider import ProviderCollector
from aws_exporter.shared.core.scrape_config import ScrapeConfigProvider

from conftest import ACCOUNT_A, ACCOUNT_B, make_account_provider

CONFIG = {
    "regions": ["us-east-1"],
    "numTaskThreads": 3,
    "namespaces": [
        {
            "name": "AWS/Lambda",
            "period": 60,
            "metrics": [
                {"name": "Invocations", "stats": ["Sum"]},
                {"name": "Duration", "scrapeInterval": 300},
            ],
        }
    ],
}


class FakeTarget:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    async def update(self) -> None:
        self.calls += 1
        if self.error:
            raise self.error

    def collect(self):
        return []


@pytest.fixture
def manager(tmp_path, rate_limiter) -> ScrapeTaskManager:
    path = tmp_path / "scrape_config.json"
    path.write_text(json.dumps(CONFIG))
    config_provider = ScrapeConfigProvider(str(path))
    config_provider.load()
    return ScrapeTaskManager(
        config_provider,
        ProviderCollector(),
        make_account_provider(
            AWSAccount(ACCOUNT_A, ("us-east-1",)),
            AWSAccount(ACCOUNT_B, ("us-east-1", "eu-west-1")),
        ),
        MagicMock(),
        rate_limiter,
        scheduler=MagicMock(),
        clock=lambda: 45.0,
    )


class TestClockAlignment:
    def test_minute_alignment(self) -> None:
        assert first_fire_delay_millis(45_000, 60, ClockAlignment.MINUTE) == 15_000

    def test_interval_alignment(self) -> None:
        assert first_fire_delay_millis(45_000, 60, ClockAlignment.INTERVAL) == 15_000
        assert first_fire_delay_millis(45_000, 300, ClockAlignment.INTERVAL) == 255_000

    def test_on_boundary_waits_a_full_period(self) -> None:
        assert first_fire_delay_millis(120_000, 60, ClockAlignment.INTERVAL) == 60_000

    def test_minute_alignment_ignores_cadence(self) -> None:
        assert first_fire_delay_millis(45_000, 900, ClockAlignment.MINUTE) == 15_000


class TestEnsureScheduled:
    def test_registers_once(self, manager: ScrapeTaskManager) -> None:
        target = FakeTarget()

        first = manager.ensure_scheduled(("us-east-1", 60), 60, ClockAlignment.INTERVAL, target)
        second = manager.ensure_scheduled(
            ("us-east-1", 60), 60, ClockAlignment.INTERVAL, FakeTarget()
        )

        assert second is first
        assert first.target is target
        manager.scheduler.add_job.assert_called_once()
        assert manager.collector.providers == (target,)

    def test_first_fire_time_is_aligned(self, manager: ScrapeTaskManager) -> None:
        task = manager.ensure_scheduled("job", 60, ClockAlignment.MINUTE, FakeTarget())
        epoch = datetime.fromtimestamp(0, tz=timezone.utc)
        assert task.first_fire_time == epoch + timedelta(seconds=60)

    def test_job_options(self, manager: ScrapeTaskManager) -> None:
        manager.ensure_scheduled(("us-east-1", 300), 300, ClockAlignment.INTERVAL, FakeTarget())

        kwargs = manager.scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == "us-east-1/300s"
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        assert kwargs["args"] == [manager.semaphore]

    def test_lookup(self, manager: ScrapeTaskManager) -> None:
        manager.ensure_scheduled("job", 60, ClockAlignment.MINUTE, FakeTarget())
        assert manager.get_task("job").key == "job"
        assert manager.get_task("missing") is None
        assert manager.task_keys() == ["job"]


class TestSetupScrapeTasks:
    @pytest.mark.asyncio
    async def test_registers_region_interval_tasks(self, manager: ScrapeTaskManager) -> None:
        await manager.setup_scrape_tasks()

        keys = manager.task_keys()
        for key in [
            ("eu-west-1", 60),
            ("eu-west-1", 300),
            ("us-east-1", 60),
            ("us-east-1", 300),
        ]:
            assert key in keys
            assert manager.get_task(key).alignment == ClockAlignment.INTERVAL
        assert manager.get_task("metric_query_provider").alignment == ClockAlignment.MINUTE
        assert manager.get_task("resource_exporter:lambda_capacity").alignment == ClockAlignment.MINUTE
        assert "alarm_fetcher" in keys
        assert "resource_relation_exporter" in keys

    @pytest.mark.asyncio
    async def test_rerun_never_replaces(self, manager: ScrapeTaskManager) -> None:
        await manager.setup_scrape_tasks()
        tasks = {key: manager.get_task(key) for key in manager.task_keys()}
        jobs = manager.scheduler.add_job.call_count

        await manager.setup_scrape_tasks()

        assert manager.scheduler.add_job.call_count == jobs
        assert all(manager.get_task(key) is task for key, task in tasks.items())

    @pytest.mark.asyncio
    async def test_account_lookup_failure_keeps_singletons(
        self, manager: ScrapeTaskManager
    ) -> None:
        manager.account_provider.get_accounts = AsyncMock(side_effect=RuntimeError("sts down"))

        await manager.setup_scrape_tasks()

        assert "metric_query_provider" in manager.task_keys()
        assert not any(isinstance(key, tuple) for key in manager.task_keys())


class TestScheduledTaskExecution:
    @pytest.mark.asyncio
    async def test_failure_is_counted_and_not_raised(self) -> None:
        target = FakeTarget(RuntimeError("boom"))
        task = ScheduledTask(
            key="failing_job",
            cadence_seconds=60,
            alignment=ClockAlignment.MINUTE,
            first_fire_time=datetime.now(timezone.utc),
            target=target,
        )
        before = REGISTRY.get_sample_value(
            "aws_exporter_task_failures_total", {"task": "failing_job"}
        ) or 0.0

        await task.execute(asyncio.Semaphore(1))

        assert target.calls == 1
        assert REGISTRY.get_sample_value(
            "aws_exporter_task_failures_total", {"task": "failing_job"}
        ) == before + 1

    @pytest.mark.asyncio
    async def test_semaphore_bounds_concurrency(self) -> None:
        running = 0
        peak = 0

        class SlowTarget(FakeTarget):
            async def update(self) -> None:
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1

        semaphore = asyncio.Semaphore(2)
        tasks = [
            ScheduledTask(
                key=f"job_{n}",
                cadence_seconds=60,
                alignment=ClockAlignment.MINUTE,
                first_fire_time=datetime.now(timezone.utc),
                target=SlowTarget(),
            )
            for n in range(5)
        ]

        await asyncio.gather(*(t.execute(semaphore) for t in tasks))

        assert peak == 2


class TestLifecycle:
    def test_stop_when_not_running(self, manager: ScrapeTaskManager) -> None:
        manager.scheduler.running = False
        manager.stop()
        manager.scheduler.shutdown.assert_not_called()

    def test_start_registers_setup_job(self, manager: ScrapeTaskManager) -> None:
        manager.start()
        assert manager.scheduler.add_job.call_args.kwargs["id"] == "setup_scrape_tasks"
        manager.scheduler.start.assert_called_once()

    def test_task_ids(self) -> None:
        assert task_id(("us-east-1", 60)) == "us-east-1/60s"
        assert task_id("alarm_fetcher") == "alarm_fetcher"
