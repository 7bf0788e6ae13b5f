from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from aws_exporter.modules.resources.domain.mapper import ResourceMapper
from aws_exporter.services.scheduler.task_manager import ScrapeTaskManager
from aws_exporter.shared.adapters.aws_utils import (
    AccountProvider,
    AWSClientProvider,
    get_boto_session,
)
from aws_exporter.shared.adapters.rate_limiter import RateLimiter
from aws_exporter.shared.core.config import get_settings
from aws_exporter.shared.core.http import close_http_client, init_http_client
from aws_exporter.shared.core.logging import setup_logging
from aws_exporter.shared.core.metric_provider import ProviderCollector
from aws_exporter.shared.core.ops_metrics import TelemetryCollector
from aws_exporter.shared.core.scrape_config import ScrapeConfigProvider

settings = get_settings()
setup_logging()
logger = structlog.get_logger()


def build_task_manager(config_provider: ScrapeConfigProvider) -> ScrapeTaskManager:
    telemetry = TelemetryCollector()
    collector = ProviderCollector()
    collector.add(telemetry)

    rate_limiter = RateLimiter(telemetry)
    session = get_boto_session()
    return ScrapeTaskManager(
        config_provider,
        collector,
        AccountProvider(config_provider, rate_limiter, session),
        AWSClientProvider(rate_limiter, session),
        rate_limiter,
        mapper=ResourceMapper(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("app_starting", app_name=settings.APP_NAME)

    # A broken scrape config is fatal here; later refreshes fall back to it.
    config_provider = ScrapeConfigProvider(settings.SCRAPE_CONFIG_PATH)
    config_provider.load()

    await init_http_client()

    manager = build_task_manager(config_provider)
    REGISTRY.register(manager.collector)
    if settings.TESTING:
        logger.info("scheduler_skipped_in_testing")
    else:
        manager.start()
    app.state.task_manager = manager

    yield

    logger.info("app_shutting_down")
    manager.stop()
    REGISTRY.unregister(manager.collector)
    await close_http_client()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)


@app.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
async def health() -> dict:
    manager = getattr(app.state, "task_manager", None)
    return {
        "status": "ok",
        "scheduler": manager.get_status() if manager is not None else None,
    }
