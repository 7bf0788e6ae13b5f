from datetime import datetime, timezone

import httpx
import structlog

from aws_exporter.modules.alarms.domain.alarm_labels import AlarmMetricConverter
from aws_exporter.shared.core.http import get_http_client
from aws_exporter.shared.core.scrape_config import ScrapeConfigProvider

logger = structlog.get_logger()


class AlertsProcessor:
    """
    Forwards firing alarms to `alert_forward_url` as a JSON list of
    alertmanager-style alerts (`labels`, `annotations`, `startsAt`).
    """

    def __init__(
        self,
        config_provider: ScrapeConfigProvider,
        converter: AlarmMetricConverter | None = None,
    ):
        self.config_provider = config_provider
        self.converter = converter or AlarmMetricConverter()

    def to_alerts(self, labels_list: list[dict[str, str]]) -> list[dict]:
        config = self.config_provider.get_scrape_config()
        alerts = []
        for labels in labels_list:
            labels = self.converter.simplify_alarm_name(dict(labels))
            if config.tenant:
                labels["tenant"] = config.tenant
            alerts.append(
                {
                    "labels": labels,
                    "annotations": {},
                    "startsAt": labels.get("timestamp")
                    or datetime.now(timezone.utc).isoformat(),
                }
            )
        return alerts

    async def send_alerts(self, labels_list: list[dict[str, str]]) -> bool:
        url = self.config_provider.get_scrape_config().alert_forward_url
        if not url or not labels_list:
            return False
        alerts = self.to_alerts(labels_list)
        try:
            response = await get_http_client().post(url, json=alerts)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("alert_forward_failed", url=url, alerts=len(alerts), error=str(e))
            return False
        logger.info("alerts_forwarded", url=url, alerts=len(alerts))
        return True
