"""
Shared httpx.AsyncClient for outbound calls (alert forwarding).

A single client is created in the FastAPI lifespan and reused by background
jobs so connections are pooled.
"""

from typing import Optional
import httpx
import structlog

from aws_exporter.shared.core.config import get_settings

logger = structlog.get_logger()

_client: Optional[httpx.AsyncClient] = None


def _new_client() -> httpx.AsyncClient:
    settings = get_settings()
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.ALERT_FORWARD_TIMEOUT_SECONDS, connect=5.0),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
        headers={"User-Agent": f"{settings.APP_NAME}/{settings.VERSION}"},
    )


def get_http_client() -> httpx.AsyncClient:
    """Returns the shared client, creating it lazily outside the app lifespan."""
    global _client
    if _client is None:
        logger.warning("http_client_lazy_initialized")
        _client = _new_client()
    return _client


async def init_http_client() -> None:
    global _client
    if _client is not None:
        logger.warning("http_client_already_initialized")
        return
    _client = _new_client()
    logger.info("http_client_initialized")


async def close_http_client() -> None:
    global _client
    if _client is None:
        return
    await _client.aclose()
    _client = None
    logger.info("http_client_closed")
