import re
from collections.abc import Iterable
from functools import partial
from typing import Any

import structlog
from prometheus_client.core import Metric

from aws_exporter.modules.relations.adapters.region_scan import retain_failed_scopes
from aws_exporter.modules.resources.domain.resource import (
    Resource,
    ResourceRelation,
    ResourceType,
)
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
    NAMESPACE_LABEL,
    REGION_LABEL,
    RESOURCE_METRIC,
)
from aws_exporter.shared.core.metric_provider import build_family

logger = structlog.get_logger()

FORWARDS_TO = "FORWARDS_TO"

# Integration URI of a Lambda proxy/custom integration:
# arn:aws:apigateway:<region>:lambda:path/<version>/functions/<lambda arn>/invocations
LAMBDA_URI_PATTERN = re.compile(
    r"^arn:aws[\w-]*:apigateway:(?P<api_region>[^:]+):lambda:path/[^/]+/functions/"
    r"arn:aws[\w-]*:lambda:(?P<region>[^:]+):(?P<account>[^:]+):function:"
    r"(?P<name>[^:/]+)(?::[^/]+)?/invocations$"
)


def lambda_from_integration_uri(uri: str) -> Resource | None:
    match = LAMBDA_URI_PATTERN.match(uri or "")
    if match is None:
        return None
    return Resource(
        type=ResourceType.LAMBDA_FUNCTION,
        name=match.group("name"),
        region=match.group("region"),
        account=match.group("account"),
    )


class ApiGatewayToLambdaBuilder:
    """
    `ApiGateway FORWARDS_TO LambdaFunction` from each REST API method's
    integration URI, plus an `aws_resource` sample per REST API.
    """

    def __init__(
        self,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
    ):
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self._relations: frozenset[ResourceRelation] = frozenset()
        self._metrics: list[Metric] = []

    @property
    def relations(self) -> frozenset[ResourceRelation]:
        return self._relations

    async def _integrations(
        self, client: Any, account: AWSAccount, region: str, api: Resource
    ) -> set[ResourceRelation]:
        relations: set[ResourceRelation] = set()
        labels = call_labels(account.account_id, region)
        pages = iter_aws_pages(
            self.rate_limiter,
            client.get_resources,
            operation_name="ApiGatewayClient/getResources",
            labels=labels,
            request={"restApiId": api.id},
            token_key="position",
        )
        async for page in pages:
            for api_resource in page.get("items", []):
                for http_method in api_resource.get("resourceMethods", {}):
                    method = await self.rate_limiter.execute(
                        "ApiGatewayClient/getMethod",
                        labels,
                        partial(
                            client.get_method,
                            restApiId=api.id,
                            resourceId=api_resource["id"],
                            httpMethod=http_method,
                        ),
                    )
                    function = lambda_from_integration_uri(
                        method.get("methodIntegration", {}).get("uri", "")
                    )
                    if function is not None:
                        relations.add(
                            ResourceRelation(from_=api, to=function, name=FORWARDS_TO)
                        )
        return relations

    async def _fetch(
        self, account: AWSAccount, region: str
    ) -> tuple[set[ResourceRelation], list[Resource]]:
        relations: set[ResourceRelation] = set()
        apis: list[Resource] = []
        async with self.client_provider.client("apigateway", region, account) as client:
            pages = iter_aws_pages(
                self.rate_limiter,
                client.get_rest_apis,
                operation_name="ApiGatewayClient/getRestApis",
                labels=call_labels(account.account_id, region),
                token_key="position",
            )
            async for page in pages:
                for rest_api in page.get("items", []):
                    api = Resource(
                        type=ResourceType.API_GATEWAY,
                        name=rest_api["name"],
                        id=rest_api["id"],
                        region=region,
                        account=account.account_id,
                    )
                    apis.append(api)
                    relations |= await self._integrations(client, account, region, api)
        return relations, apis

    async def update(self) -> None:
        logger.info("api_gateway_lambda_export_started")
        relations: set[ResourceRelation] = set()
        apis: list[Resource] = []
        failed: set[tuple[str, str]] = set()
        for account in await self.account_provider.get_accounts():
            for region in account.regions:
                try:
                    found, region_apis = await self._fetch(account, region)
                except Exception as e:
                    logger.error(
                        "api_gateway_lambda_discovery_failed",
                        account_id=account.account_id,
                        region=region,
                        error=str(e),
                    )
                    failed.add((account.account_id, region))
                    continue
                relations |= found
                apis.extend(region_apis)

        self._relations = frozenset(
            relations | retain_failed_scopes(self._relations, failed)
        )
        samples = [
            (
                {
                    ACCOUNT_ID_LABEL: api.account,
                    REGION_LABEL: api.region,
                    "aws_resource_type": "AWS::ApiGateway::RestApi",
                    NAMESPACE_LABEL: "AWS/ApiGateway",
                    "name": api.name,
                    "id": api.id or "",
                    JOB_LABEL: api.name,
                },
                1.0,
            )
            for api in apis
        ]
        self._metrics = [build_family(RESOURCE_METRIC, samples)] if samples else []

    def collect(self) -> Iterable[Metric]:
        return self._metrics
