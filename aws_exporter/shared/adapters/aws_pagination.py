from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from functools import partial
from typing import Any

import structlog

from aws_exporter.shared.adapters.rate_limiter import RateLimiter

logger = structlog.get_logger()


async def iter_aws_pages(
    rate_limiter: RateLimiter,
    call: Callable[..., Awaitable[dict[str, Any]]],
    *,
    operation_name: str,
    labels: dict[str, str],
    request: dict[str, Any] | None = None,
    token_key: str = "NextToken",
    response_token_key: str | None = None,
    max_pages: int | None = None,
) -> AsyncGenerator[dict[str, Any], None]:
    """
    Stream pages of a token-paginated AWS call, one rate-limited call per page.

    The next request carries the previous response's token under `token_key`
    (`response_token_key` when the response names it differently, e.g.
    Marker/NextMarker) until the response has none. Pages are fetched
    strictly one after another.
    """
    if max_pages is not None and max_pages <= 0:
        raise ValueError("max_pages must be > 0 when provided")

    base_request = dict(request or {})
    token: str | None = None
    pages_seen = 0
    while True:
        kwargs = dict(base_request)
        if token:
            kwargs[token_key] = token
        page = await rate_limiter.execute(
            operation_name, labels, partial(call, **kwargs)
        )
        pages_seen += 1
        yield page

        token = page.get(response_token_key or token_key)
        if not token:
            return
        if max_pages is not None and pages_seen >= max_pages:
            logger.warning(
                "aws_paginator_page_cap_reached",
                operation=operation_name,
                max_pages=max_pages,
            )
            return
