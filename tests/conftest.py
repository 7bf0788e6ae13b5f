"""
Shared fixtures for the exporter test suite.

AWS is never contacted: clients are `MagicMock`s that act as async context
managers, handed out by a fake client provider keyed by (account, region).
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment BEFORE any aws_exporter imports
os.environ["TESTING"] = "true"

from aws_exporter.shared.adapters.aws_utils import AWSAccount  # noqa: E402
from aws_exporter.shared.adapters.rate_limiter import RateLimiter  # noqa: E402
from aws_exporter.shared.core.ops_metrics import TelemetryCollector  # noqa: E402
from aws_exporter.shared.core.scrape_config import (  # noqa: E402
    ScrapeConfig,
    ScrapeConfigProvider,
)

ACCOUNT_A = "123456789012"
ACCOUNT_B = "210987654321"


def make_client(**methods: object) -> MagicMock:
    """Mock aioboto3 client; each keyword becomes an AsyncMock method."""
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    for name, behaviour in methods.items():
        if isinstance(behaviour, list):
            setattr(client, name, AsyncMock(side_effect=behaviour))
        elif isinstance(behaviour, Exception):
            setattr(client, name, AsyncMock(side_effect=behaviour))
        else:
            setattr(client, name, AsyncMock(return_value=behaviour))
    return client


def make_client_provider(clients: dict[tuple[str, str], MagicMock]) -> MagicMock:
    """`client(service, region, account)` returns the mock for (account, region)."""
    provider = MagicMock()

    def _client(service: str, region: str, account: AWSAccount) -> MagicMock:
        return clients[(account.account_id, region)]

    provider.client = MagicMock(side_effect=_client)
    return provider


def make_account_provider(*accounts: AWSAccount) -> MagicMock:
    provider = MagicMock()
    provider.get_accounts = AsyncMock(return_value=list(accounts))
    return provider


def make_config_provider(**config: object) -> ScrapeConfigProvider:
    provider = ScrapeConfigProvider("unused-scrape-config.json")
    provider.set_scrape_config(ScrapeConfig.model_validate(config))
    return provider


@pytest.fixture
def telemetry() -> TelemetryCollector:
    return TelemetryCollector()


@pytest.fixture
def rate_limiter(telemetry: TelemetryCollector) -> RateLimiter:
    return RateLimiter(telemetry, max_calls=1000, window_seconds=1.0, overrides={})
