from collections.abc import Iterable

import structlog
from prometheus_client.core import Metric

from aws_exporter.modules.alarms.adapters.alerts_processor import AlertsProcessor
from aws_exporter.modules.alarms.domain.alarm_labels import (
    AlarmMetricConverter,
    alarm_labels,
)
from aws_exporter.shared.adapters.aws_pagination import iter_aws_pages
from aws_exporter.shared.adapters.aws_utils import (
    AccountProvider,
    AWSAccount,
    AWSClientProvider,
    call_labels,
)
from aws_exporter.shared.adapters.rate_limiter import RateLimiter
from aws_exporter.shared.core.constants import ALARM_METRIC
from aws_exporter.shared.core.metric_provider import build_family
from aws_exporter.shared.core.scrape_config import ScrapeConfigProvider

logger = structlog.get_logger()


class AlarmFetcher:
    """
    Polls CloudWatch for alarms in state ALARM.

    With `alert_forward_url` set the alarms are forwarded and nothing is
    exposed; otherwise each alarm becomes an `aws_cloudwatch_alarm` sample.
    """

    def __init__(
        self,
        config_provider: ScrapeConfigProvider,
        account_provider: AccountProvider,
        client_provider: AWSClientProvider,
        rate_limiter: RateLimiter,
        alerts_processor: AlertsProcessor | None = None,
        converter: AlarmMetricConverter | None = None,
    ):
        self.config_provider = config_provider
        self.account_provider = account_provider
        self.client_provider = client_provider
        self.rate_limiter = rate_limiter
        self.converter = converter or AlarmMetricConverter()
        self.alerts_processor = alerts_processor or AlertsProcessor(
            config_provider, self.converter
        )
        self._metrics: list[Metric] = []

    async def _alarms(self, account: AWSAccount, region: str) -> list[dict[str, str]]:
        found: list[dict[str, str]] = []
        async with self.client_provider.client("cloudwatch", region, account) as client:
            pages = iter_aws_pages(
                self.rate_limiter,
                client.describe_alarms,
                operation_name="CloudWatchClient/describeAlarms",
                labels=call_labels(account.account_id, region),
                request={"StateValue": "ALARM"},
            )
            async for page in pages:
                for alarm in page.get("MetricAlarms", []):
                    found.append(alarm_labels(alarm, account.account_id, region))
        return found

    async def update(self) -> None:
        config = self.config_provider.get_scrape_config()
        if not config.pull_cw_alarms:
            self._metrics = []
            return

        labels_list: list[dict[str, str]] = []
        for account in await self.account_provider.get_accounts():
            for region in account.regions:
                try:
                    labels_list.extend(await self._alarms(account, region))
                except Exception as e:
                    logger.error(
                        "alarm_fetch_failed",
                        account_id=account.account_id,
                        region=region,
                        error=str(e),
                    )

        logger.info("alarms_fetched", alarms=len(labels_list))
        if config.alert_forward_url:
            self._metrics = []
            await self.alerts_processor.send_alerts(labels_list)
            return

        samples = [
            (self.converter.simplify_alarm_name(labels), 1.0) for labels in labels_list
        ]
        self._metrics = [build_family(ALARM_METRIC, samples)] if samples else []

    def collect(self) -> Iterable[Metric]:
        return self._metrics
