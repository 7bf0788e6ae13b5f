"""
Admission control for AWS API calls.

Every remote call goes through `RateLimiter.execute`. Limits are per operation
name (e.g. "CloudWatchClient/getMetricData") and process wide, independent of
account or region. The limiter never retries: botocore's own retry policy is
the only retry layer.
"""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from aws_exporter.shared.core.config import get_settings
from aws_exporter.shared.core.constants import (
    OPERATION_LABEL,
    SCRAPE_CALLS_METRIC,
    SCRAPE_LATENCY_METRIC,
)
from aws_exporter.shared.core.ops_metrics import TelemetryCollector

logger = structlog.get_logger()

T = TypeVar("T")


class _OperationWindow:
    """
    Sliding window over completed calls of one operation.

    A call is admitted only while completed-in-window plus in-flight stays
    below the ceiling. In-flight calls hold their slot until they complete,
    after which the completion timestamp holds it for another window.
    """

    def __init__(self, max_calls: int, window_seconds: float):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.completed: deque[float] = deque()
        self.in_flight = 0
        self._condition = asyncio.Condition()

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self.completed and self.completed[0] <= cutoff:
            self.completed.popleft()

    async def acquire(self, operation: str) -> None:
        async with self._condition:
            while True:
                now = time.monotonic()
                self._evict(now)
                if len(self.completed) + self.in_flight < self.max_calls:
                    self.in_flight += 1
                    return

                # Oldest completion leaving the window frees a slot; with no
                # completions left only an in-flight call finishing can.
                wait_time: float | None = None
                if self.completed:
                    wait_time = max(
                        self.completed[0] + self.window_seconds - now, 0.001
                    )
                logger.debug(
                    "rate_limit_waiting",
                    operation=operation,
                    wait_seconds=round(wait_time, 3) if wait_time else None,
                    in_flight=self.in_flight,
                )
                try:
                    await asyncio.wait_for(self._condition.wait(), timeout=wait_time)
                except asyncio.TimeoutError:
                    pass

    async def release(self) -> None:
        async with self._condition:
            self.in_flight -= 1
            self.completed.append(time.monotonic())
            self._condition.notify_all()


class RateLimiter:
    """Per-operation sliding-window limiter that also records call telemetry."""

    def __init__(
        self,
        telemetry: TelemetryCollector,
        max_calls: int | None = None,
        window_seconds: float | None = None,
        overrides: dict[str, int] | None = None,
    ):
        settings = get_settings()
        self.telemetry = telemetry
        self.max_calls = max_calls or settings.RATE_LIMIT_MAX_CALLS
        self.window_seconds = window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS
        self.overrides = (
            dict(settings.RATE_LIMIT_OVERRIDES) if overrides is None else dict(overrides)
        )
        self._windows: dict[str, _OperationWindow] = {}

    def _window(self, operation: str) -> _OperationWindow:
        window = self._windows.get(operation)
        if window is None:
            window = _OperationWindow(
                self.overrides.get(operation, self.max_calls), self.window_seconds
            )
            self._windows[operation] = window
        return window

    async def execute(
        self,
        operation: str,
        labels: dict[str, str],
        call: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run `call` once admission control lets it through.

        Latency (ms) and a call count are recorded under `operation` plus
        `labels` whether the call returns or raises. The result or the
        exception is passed through unchanged.
        """
        window = self._window(operation)
        await window.acquire(operation)
        started = time.perf_counter()
        try:
            return await call()
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            await window.release()
            telemetry_labels = {**labels, OPERATION_LABEL: operation}
            self.telemetry.record_latency(
                SCRAPE_LATENCY_METRIC, telemetry_labels, elapsed_ms
            )
            self.telemetry.record_counter_value(
                SCRAPE_CALLS_METRIC, telemetry_labels, 1
            )
