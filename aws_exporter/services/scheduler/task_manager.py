"""
Periodic task registry on top of APScheduler.

Every exporter is driven by one `ScheduledTask`. Metric scrape tasks are keyed
by `(region, interval_seconds)` and fire on interval boundaries; metadata
exporters are keyed by name and fire on minute boundaries. The registry only
grows: `ensure_scheduled` is the single way in and never replaces a task.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from aws_exporter.modules.alarms.adapters.alarm_fetcher import AlarmFetcher
from aws_exporter.modules.metrics.adapters.query_provider import MetricQueryProvider
from aws_exporter.modules.metrics.adapters.scrape_task import MetricScrapeTask
from aws_exporter.modules.metrics.domain.sample_builder import MetricSampleBuilder
from aws_exporter.modules.relations.adapters.api_gateway import ApiGatewayToLambdaBuilder
from aws_exporter.modules.relations.adapters.ec2 import (
    EC2ToEBSVolumeExporter,
    ENIToEC2RelationBuilder,
)
from aws_exporter.modules.relations.adapters.ecs import ECSServiceDiscoveryExporter
from aws_exporter.modules.relations.adapters.load_balancers import (
    LBToASGRelationBuilder,
    LBToLambdaRoutingBuilder,
    TargetGroupLBMapProvider,
)
from aws_exporter.modules.relations.domain.aggregator import ResourceRelationExporter
from aws_exporter.modules.resources.adapters.lambda_capacity import LambdaCapacityExporter
from aws_exporter.modules.resources.adapters.lambda_event_sources import (
    LambdaEventSourceExporter,
)
from aws_exporter.modules.resources.adapters.resource_exporter import ResourceExporter
from aws_exporter.modules.resources.adapters.service_exporters import (
    KinesisAnalyticsExporter,
    SNSTopicExporter,
)
from aws_exporter.modules.resources.domain.mapper import ResourceMapper
from aws_exporter.shared.adapters.aws_utils import AccountProvider, AWSClientProvider
from aws_exporter.shared.adapters.rate_limiter import RateLimiter
from aws_exporter.shared.core.config import get_settings
from aws_exporter.shared.core.constants import (
    ALARM_TASK,
    METRIC_QUERY_TASK,
    RELATION_TASK,
    RESOURCE_TASK,
)
from aws_exporter.shared.core.metric_provider import MetricProvider, ProviderCollector
from aws_exporter.shared.core.ops_metrics import (
    SCHEDULED_TASKS,
    TASK_RUN_DURATION,
    TASK_RUN_FAILURES,
)
from aws_exporter.shared.core.scrape_config import ScrapeConfigProvider

logger = structlog.get_logger()

MINUTE_MILLIS = 60_000
SETUP_JOB_ID = "setup_scrape_tasks"

TaskKey = Union[str, tuple[str, int]]


class ClockAlignment(str, Enum):
    MINUTE = "minute"
    INTERVAL = "interval"


def first_fire_delay_millis(
    now_millis: int, cadence_seconds: int, alignment: ClockAlignment
) -> int:
    """Milliseconds until the next minute or cadence boundary."""
    if alignment == ClockAlignment.MINUTE:
        period = MINUTE_MILLIS
    else:
        period = cadence_seconds * 1000
    return period - now_millis % period


def task_id(key: TaskKey) -> str:
    if isinstance(key, tuple):
        region, interval = key
        return f"{region}/{interval}s"
    return key


@dataclass
class ScheduledTask:
    key: TaskKey
    cadence_seconds: int
    alignment: ClockAlignment
    first_fire_time: datetime
    target: MetricProvider

    async def execute(self, semaphore: asyncio.Semaphore) -> None:
        name = task_id(self.key)
        start = time.perf_counter()
        status = "success"
        async with semaphore:
            try:
                await self.target.update()
            except Exception as e:
                status = "failure"
                TASK_RUN_FAILURES.labels(task=name).inc()
                logger.error("scheduled_task_failed", task=name, error=str(e), exc_info=True)
            finally:
                TASK_RUN_DURATION.labels(task=name, status=status).observe(
                    time.perf_counter() - start
                )


class ScrapeTaskManager:
    """Owns the APScheduler instance and the task registry."""

    def __init__(
        self,
        config_provider: ScrapeConfigProvider,
        collector: ProviderCollector,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
        mapper: Optional[ResourceMapper] = None,
        scheduler: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config_provider = config_provider
        self.collector = collector
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self.mapper = mapper or ResourceMapper()
        self.scheduler = scheduler or AsyncIOScheduler()
        self.clock = clock
        self.semaphore = asyncio.Semaphore(
            config_provider.get_scrape_config().num_task_threads
        )
        self._tasks: Dict[TaskKey, ScheduledTask] = {}
        self._sample_builder = MetricSampleBuilder(self.mapper)

        shared = (account_provider, client_provider, rate_limiter)
        self.query_provider = MetricQueryProvider(config_provider, *shared)
        self.tg_map = TargetGroupLBMapProvider(*shared, mapper=self.mapper)
        self.resource_exporters: Dict[str, MetricProvider] = {
            "config_resources": ResourceExporter(config_provider, *shared, mapper=self.mapper),
            "sns_topics": SNSTopicExporter(*shared),
            "kinesis_analytics": KinesisAnalyticsExporter(*shared, mapper=self.mapper),
            "lambda_event_sources": LambdaEventSourceExporter(
                config_provider, *shared, mapper=self.mapper
            ),
            "lambda_capacity": LambdaCapacityExporter(config_provider, *shared),
        }
        self.relation_builders: Dict[str, Any] = {
            "lb_to_asg": LBToASGRelationBuilder(self.tg_map, *shared, mapper=self.mapper),
            "lb_to_lambda": LBToLambdaRoutingBuilder(self.tg_map, *shared, mapper=self.mapper),
            "eni_to_ec2": ENIToEC2RelationBuilder(*shared),
            "ebs_to_ec2": EC2ToEBSVolumeExporter(*shared),
            "api_gateway_to_lambda": ApiGatewayToLambdaBuilder(*shared),
            "lb_to_ecs_service": ECSServiceDiscoveryExporter(
                self.tg_map, *shared, mapper=self.mapper
            ),
        }
        self.relation_exporter = ResourceRelationExporter(
            list(self.relation_builders.values())
        )
        self.alarm_fetcher = AlarmFetcher(config_provider, *shared)

    def get_task(self, key: TaskKey) -> Optional[ScheduledTask]:
        return self._tasks.get(key)

    def task_keys(self) -> list[TaskKey]:
        return list(self._tasks)

    def ensure_scheduled(
        self,
        key: TaskKey,
        cadence_seconds: int,
        alignment: ClockAlignment,
        target: MetricProvider,
    ) -> ScheduledTask:
        """Register `target` under `key` unless a task already exists there."""
        existing = self._tasks.get(key)
        if existing is not None:
            return existing

        now = self.clock()
        delay_ms = first_fire_delay_millis(int(now * 1000), cadence_seconds, alignment)
        first_fire = datetime.fromtimestamp(now, tz=timezone.utc) + timedelta(
            milliseconds=delay_ms
        )
        task = ScheduledTask(
            key=key,
            cadence_seconds=cadence_seconds,
            alignment=alignment,
            first_fire_time=first_fire,
            target=target,
        )
        self._tasks[key] = task
        self.scheduler.add_job(
            task.execute,
            trigger=IntervalTrigger(seconds=cadence_seconds, start_date=first_fire),
            args=[self.semaphore],
            id=task_id(key),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.collector.add(target)
        SCHEDULED_TASKS.labels(kind=alignment.value).inc()
        logger.info(
            "scheduled_task_registered",
            task=task_id(key),
            cadence_seconds=cadence_seconds,
            first_fire_time=first_fire.isoformat(),
        )
        return task

    def _schedule_metadata(self, key: str, target: MetricProvider) -> None:
        self.ensure_scheduled(key, 60, ClockAlignment.MINUTE, target)

    async def setup_scrape_tasks(self) -> None:
        """Re-read configuration and register anything not yet scheduled."""
        config = self.config_provider.refresh()

        self._schedule_metadata(METRIC_QUERY_TASK, self.query_provider)
        for name, exporter in self.resource_exporters.items():
            self._schedule_metadata(f"{RESOURCE_TASK}:{name}", exporter)
        if config.pull_cw_alarms:
            self._schedule_metadata(ALARM_TASK, self.alarm_fetcher)
        if config.export_relations:
            self._schedule_metadata("relation_builder:target_groups", self.tg_map)
            for name, builder in self.relation_builders.items():
                self._schedule_metadata(f"relation_builder:{name}", builder)
            self._schedule_metadata(RELATION_TASK, self.relation_exporter)

        try:
            accounts = await self.account_provider.get_accounts()
        except Exception as e:
            logger.error("scrape_task_setup_accounts_failed", error=str(e))
            return
        regions = sorted({region for account in accounts for region in account.regions})
        for region in regions:
            for interval in config.intervals():
                key = (region, interval)
                if key in self._tasks:
                    continue
                self.ensure_scheduled(
                    key,
                    interval,
                    ClockAlignment.INTERVAL,
                    MetricScrapeTask(
                        region,
                        interval,
                        config.delay,
                        self.query_provider,
                        self.account_provider,
                        self.client_provider,
                        self.rate_limiter,
                        sample_builder=self._sample_builder,
                    ),
                )
        logger.info("scrape_tasks_setup_completed", tasks=len(self._tasks))

    def start(self) -> None:
        settings = get_settings()
        start_date = datetime.now(timezone.utc) + timedelta(
            seconds=settings.TASK_SETUP_INITIAL_DELAY_SECONDS
        )
        self.scheduler.add_job(
            self.setup_scrape_tasks,
            trigger=IntervalTrigger(
                seconds=settings.TASK_SETUP_INTERVAL_SECONDS, start_date=start_date
            ),
            id=SETUP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("scrape_task_manager_started")

    def stop(self) -> None:
        if not self.scheduler.running:
            logger.debug("scheduler_stop_skipped_not_running")
            return
        self.scheduler.shutdown(wait=True)
        logger.info("scrape_task_manager_stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.scheduler.running,
            "tasks": [task_id(key) for key in self._tasks],
            "jobs": [str(job.id) for job in self.scheduler.get_jobs()],
        }
