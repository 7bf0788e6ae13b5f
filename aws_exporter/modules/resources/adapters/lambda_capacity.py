"""
Lambda concurrency headroom.

Per region: the account's concurrency limits. Per function: its timeout and,
for every alias or version with provisioned concurrency, the available,
requested and allocated executions.
"""

from collections import defaultdict
from collections.abc import Iterable
from typing import Any

import structlog
from prometheus_client.core import Metric

from aws_exporter.modules.resources.adapters.lambda_event_sources import LAMBDA_NAMESPACE
from aws_exporter.shared.adapters.aws_pagination import iter_aws_pages
from aws_exporter.shared.adapters.aws_utils import (
    AccountProvider,
    AWSAccount,
    AWSClientProvider,
    call_labels,
)
from aws_exporter.shared.adapters.rate_limiter import RateLimiter
from aws_exporter.shared.core.constants import (
    ACCOUNT_ID_LABEL,
    JOB_LABEL,
    LAMBDA_ACCOUNT_LIMIT_METRIC,
    LAMBDA_ALLOCATED_CONCURRENCY_METRIC,
    LAMBDA_AVAILABLE_CONCURRENCY_METRIC,
    LAMBDA_REQUESTED_CONCURRENCY_METRIC,
    LAMBDA_TIMEOUT_METRIC,
    NAMESPACE_LABEL,
    REGION_LABEL,
)
from aws_exporter.shared.core.metric_provider import build_family
from aws_exporter.shared.core.scrape_config import ScrapeConfigProvider

logger = structlog.get_logger()

Samples = dict[str, list[tuple[dict[str, str], float]]]

_ACCOUNT_LIMITS = {
    "ConcurrentExecutions": "concurrent_executions",
    "UnreservedConcurrentExecutions": "unreserved_concurrent_executions",
}

_PROVISIONED = {
    LAMBDA_AVAILABLE_CONCURRENCY_METRIC: "AvailableProvisionedConcurrentExecutions",
    LAMBDA_REQUESTED_CONCURRENCY_METRIC: "RequestedProvisionedConcurrentExecutions",
    LAMBDA_ALLOCATED_CONCURRENCY_METRIC: "AllocatedProvisionedConcurrentExecutions",
}


def qualifier_label(function_arn: str) -> tuple[str, str]:
    """Provisioned concurrency lives on a version (numeric) or an alias."""
    qualifier = function_arn.rsplit(":", 1)[-1]
    if qualifier[:1].isdigit():
        return "d_executed_version", qualifier
    return "d_resource", qualifier


class LambdaCapacityExporter:
    def __init__(
        self,
        config_provider: ScrapeConfigProvider,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
    ):
        self.config_provider = config_provider
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self._metrics: list[Metric] = []

    async def _region_samples(
        self, account: AWSAccount, region: str, samples: Samples
    ) -> None:
        labels = call_labels(
            account.account_id, region, **{NAMESPACE_LABEL: LAMBDA_NAMESPACE}
        )
        async with self.client_provider.client("lambda", region, account) as client:
            settings = await self.rate_limiter.execute(
                "LambdaClient/getAccountSettings", labels, client.get_account_settings
            )
            limits = settings.get("AccountLimit", {})
            for key, limit_type in _ACCOUNT_LIMITS.items():
                if key in limits:
                    samples[LAMBDA_ACCOUNT_LIMIT_METRIC].append(
                        (
                            {
                                ACCOUNT_ID_LABEL: account.account_id,
                                REGION_LABEL: region,
                                "type": limit_type,
                            },
                            float(limits[key]),
                        )
                    )

            functions = iter_aws_pages(
                self.rate_limiter,
                client.list_functions,
                operation_name="LambdaClient/listFunctions",
                labels=labels,
                token_key="Marker",
                response_token_key="NextMarker",
            )
            async for page in functions:
                for function in page.get("Functions", []):
                    await self._function_samples(
                        client, labels, account, region, function, samples
                    )

    async def _function_samples(
        self,
        client: Any,
        labels: dict[str, str],
        account: AWSAccount,
        region: str,
        function: dict[str, Any],
        samples: Samples,
    ) -> None:
        name = function["FunctionName"]
        function_labels = {
            ACCOUNT_ID_LABEL: account.account_id,
            REGION_LABEL: region,
            "d_function_name": name,
            JOB_LABEL: name,
        }
        if "Timeout" in function:
            samples[LAMBDA_TIMEOUT_METRIC].append(
                (function_labels, float(function["Timeout"]))
            )

        pages = iter_aws_pages(
            self.rate_limiter,
            client.list_provisioned_concurrency_configs,
            operation_name="LambdaClient/listProvisionedConcurrencyConfigs",
            labels=labels,
            request={"FunctionName": name},
            token_key="Marker",
            response_token_key="NextMarker",
        )
        async for page in pages:
            for config in page.get("ProvisionedConcurrencyConfigs", []):
                level, qualifier = qualifier_label(config.get("FunctionArn", ""))
                config_labels = {**function_labels, level: qualifier}
                for metric, key in _PROVISIONED.items():
                    if key in config:
                        samples[metric].append((config_labels, float(config[key])))

    async def update(self) -> None:
        config = self.config_provider.get_scrape_config()
        if not any(ns.name == LAMBDA_NAMESPACE for ns in config.namespaces):
            self._metrics = []
            return

        samples: Samples = defaultdict(list)
        for account in await self.account_provider.get_accounts():
            for region in account.regions:
                region_samples: Samples = defaultdict(list)
                try:
                    await self._region_samples(account, region, region_samples)
                except Exception as e:
                    logger.error(
                        "lambda_capacity_export_failed",
                        account_id=account.account_id,
                        region=region,
                        error=str(e),
                    )
                    continue
                for name, family_samples in region_samples.items():
                    samples[name].extend(family_samples)

        self._metrics = [
            build_family(name, family_samples)
            for name, family_samples in sorted(samples.items())
        ]

    def collect(self) -> Iterable[Metric]:
        return self._metrics
