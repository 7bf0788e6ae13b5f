from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import aioboto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from aws_exporter.shared.adapters.rate_limiter import RateLimiter
from aws_exporter.shared.core.config import get_settings
from aws_exporter.shared.core.constants import ACCOUNT_ID_LABEL, REGION_LABEL
from aws_exporter.shared.core.exceptions import AdapterError
from aws_exporter.shared.core.scrape_config import ScrapeConfigProvider

logger = structlog.get_logger()

# Mapping CamelCase to snake_case for aioboto3/boto3 credentials
AWS_CREDENTIAL_MAPPING = {
    "AccessKeyId": "aws_access_key_id",
    "SecretAccessKey": "aws_secret_access_key",
    "SessionToken": "aws_session_token",
}

# Refresh assumed-role credentials this long before they expire.
CREDENTIAL_REFRESH_MARGIN = timedelta(minutes=5)


def get_boto_config() -> BotoConfig:
    """Standardized boto config with timeouts to prevent indefinite hangs."""
    settings = get_settings()
    return BotoConfig(
        read_timeout=settings.AWS_READ_TIMEOUT_SECONDS,
        connect_timeout=settings.AWS_CONNECT_TIMEOUT_SECONDS,
        retries={"max_attempts": settings.AWS_MAX_ATTEMPTS, "mode": "standard"},
    )


def map_aws_credentials(credentials: Dict[str, Any]) -> Dict[str, str]:
    """Maps an STS Credentials block to aioboto3 client kwargs."""
    mapped: Dict[str, str] = {}
    for src, dst in AWS_CREDENTIAL_MAPPING.items():
        if src in credentials:
            mapped[dst] = credentials[src]
    return mapped


def get_boto_session() -> aioboto3.Session:
    """Returns a centralized aioboto3 session."""
    return aioboto3.Session()


def client_kwargs(region: str) -> dict[str, Any]:
    settings = get_settings()
    kwargs: dict[str, Any] = {"region_name": region, "config": get_boto_config()}
    if settings.AWS_ENDPOINT_URL:
        kwargs["endpoint_url"] = settings.AWS_ENDPOINT_URL
    return kwargs


def call_labels(account_id: str, region: str, **extra: str) -> dict[str, str]:
    """The label set every remote call is accounted under."""
    return {ACCOUNT_ID_LABEL: account_id, REGION_LABEL: region, **extra}


@dataclass(frozen=True)
class AWSAccount:
    account_id: str
    regions: tuple[str, ...] = ()
    assume_role: Optional[str] = None


class AWSClientProvider:
    """Hands out aioboto3 clients, assuming the account's role when one is set."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        session: Optional[aioboto3.Session] = None,
    ):
        self.rate_limiter = rate_limiter
        self.session = session or get_boto_session()
        self._credentials: dict[str, dict[str, Any]] = {}

    async def _assumed_credentials(
        self, account: AWSAccount, role_arn: str, region: str
    ) -> dict[str, str]:
        cached = self._credentials.get(role_arn)
        if cached and datetime.now(timezone.utc) + CREDENTIAL_REFRESH_MARGIN < cached["Expiration"]:
            return map_aws_credentials(cached)

        settings = get_settings()
        async with self.session.client("sts", **client_kwargs(region)) as sts:
            try:
                response = await self.rate_limiter.execute(
                    "STSClient/assumeRole",
                    call_labels(account.account_id, region),
                    lambda: sts.assume_role(
                        RoleArn=role_arn,
                        RoleSessionName="aws-exporter",
                        DurationSeconds=settings.AWS_ASSUME_ROLE_SESSION_SECONDS,
                    ),
                )
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")
                logger.error(
                    "sts_assume_role_failed",
                    account_id=account.account_id,
                    role_arn=role_arn,
                    error=str(e),
                )
                raise AdapterError(
                    message=f"AWS STS AssumeRole failure: {str(e)}",
                    code=error_code,
                    details={"account_id": account.account_id},
                ) from e

        credentials = response["Credentials"]
        self._credentials[role_arn] = credentials
        logger.info(
            "sts_assume_role_success",
            account_id=account.account_id,
            expires_at=str(credentials["Expiration"]),
        )
        return map_aws_credentials(credentials)

    @asynccontextmanager
    async def client(
        self, service: str, region: str, account: AWSAccount
    ) -> AsyncIterator[Any]:
        kwargs = client_kwargs(region)
        if account.assume_role:
            kwargs.update(
                await self._assumed_credentials(account, account.assume_role, region)
            )
        async with self.session.client(service, **kwargs) as client:
            yield client


class AccountProvider:
    """
    Resolves which accounts to scrape.

    Configured accounts win. Without any, the account behind the ambient
    credentials is used, discovered once through STS.
    """

    def __init__(
        self,
        config_provider: ScrapeConfigProvider,
        rate_limiter: RateLimiter,
        session: Optional[aioboto3.Session] = None,
    ):
        self.config_provider = config_provider
        self.rate_limiter = rate_limiter
        self.session = session or get_boto_session()
        self._caller_account_id: Optional[str] = None

    async def _caller_identity(self, region: str) -> str:
        if self._caller_account_id is None:
            async with self.session.client("sts", **client_kwargs(region)) as sts:
                identity = await self.rate_limiter.execute(
                    "STSClient/getCallerIdentity",
                    call_labels("", region),
                    sts.get_caller_identity,
                )
            self._caller_account_id = str(identity["Account"])
            logger.info("aws_caller_identity_resolved", account_id=self._caller_account_id)
        return self._caller_account_id

    async def get_accounts(self) -> list[AWSAccount]:
        config = self.config_provider.get_scrape_config()
        if config.accounts:
            return [
                AWSAccount(
                    account_id=a.account_id,
                    regions=tuple(a.regions or config.regions),
                    assume_role=a.assume_role or config.assume_role,
                )
                for a in config.accounts
            ]
        if not config.regions:
            return []
        account_id = await self._caller_identity(config.regions[0])
        return [
            AWSAccount(
                account_id=account_id,
                regions=tuple(config.regions),
                assume_role=config.assume_role,
            )
        ]
