"""
Scrape configuration: which regions, accounts, namespaces and metrics to poll.

The file is JSON and accepts both camelCase and snake_case keys. Validation
failures surface as `ConfigurationError`, which is fatal at startup. A later
refresh that fails keeps serving the last configuration that loaded.
"""

import json
import re
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any

import structlog
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from aws_exporter.shared.core.config import get_settings
from aws_exporter.shared.core.exceptions import ConfigurationError

logger = structlog.get_logger()

# CloudWatch accepts these periods below one minute, anything else must be a
# multiple of 60.
_HIGH_RESOLUTION_PERIODS = {1, 5, 10, 30}


class Stat(str, Enum):
    SUM = "Sum"
    AVERAGE = "Average"
    MAXIMUM = "Maximum"
    MINIMUM = "Minimum"
    SAMPLE_COUNT = "SampleCount"


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class MetricConfig(_ConfigModel):
    name: str = Field(..., min_length=1)
    stats: list[Stat] = Field(default_factory=lambda: [Stat.AVERAGE])
    period: int | None = None
    scrape_interval: int | None = None


class NamespaceConfig(_ConfigModel):
    name: str = Field(..., min_length=1)
    period: int = 300
    scrape_interval: int | None = None
    dimension_filters: dict[str, str] = Field(default_factory=dict)
    metrics: list[MetricConfig] = Field(default_factory=list)

    _compiled_filters: dict[str, re.Pattern[str]] = PrivateAttr(default_factory=dict)

    @field_validator("dimension_filters")
    @classmethod
    def _check_patterns(cls, value: dict[str, str]) -> dict[str, str]:
        for dimension, pattern in value.items():
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(
                    f"invalid dimension filter for {dimension}: {exc}"
                ) from exc
        return value

    def model_post_init(self, __context: Any) -> None:
        self._compiled_filters = {
            dimension: re.compile(pattern)
            for dimension, pattern in self.dimension_filters.items()
        }

    @property
    def metric_names(self) -> set[str]:
        return {m.name for m in self.metrics}

    def get_metric(self, name: str) -> MetricConfig | None:
        for metric in self.metrics:
            if metric.name == name:
                return metric
        return None

    def matches_dimensions(self, dimensions: dict[str, str]) -> bool:
        """Every configured filter must name a present dimension whose value matches."""
        for dimension, pattern in self._compiled_filters.items():
            value = dimensions.get(dimension)
            if value is None or not pattern.fullmatch(value):
                return False
        return True


class AccountConfig(_ConfigModel):
    account_id: str = Field(..., pattern=r"^\d{12}$")
    assume_role: str | None = None
    regions: list[str] = Field(default_factory=list)


class ScrapeConfig(_ConfigModel):
    regions: list[str] = Field(default_factory=list)
    namespaces: list[NamespaceConfig] = Field(default_factory=list)
    scrape_interval: int = 60
    delay: int = 0
    list_metrics_result_cache_ttl_minutes: int = 10
    num_task_threads: int = 5
    discover_resource_types: list[str] = Field(default_factory=list)
    alert_forward_url: str | None = None
    tenant: str | None = None
    assume_role: str | None = None
    accounts: list[AccountConfig] = Field(default_factory=list)
    pull_cw_alarms: bool = True
    export_relations: bool = True

    @field_validator("regions")
    @classmethod
    def _dedupe_regions(cls, value: list[str]) -> list[str]:
        return sorted({r.strip() for r in value if r.strip()})

    @model_validator(mode="after")
    def _validate_timing(self) -> "ScrapeConfig":
        if self.scrape_interval <= 0:
            raise ValueError("scrapeInterval must be > 0")
        if self.delay < 0:
            raise ValueError("delay must be >= 0")
        if self.num_task_threads <= 0:
            raise ValueError("numTaskThreads must be > 0")
        for ns in self.namespaces:
            for metric in ns.metrics:
                period = self.period_of(ns, metric)
                if period not in _HIGH_RESOLUTION_PERIODS and period % 60 != 0:
                    raise ValueError(
                        f"period {period} of {ns.name}/{metric.name} must be "
                        "1, 5, 10, 30 or a multiple of 60"
                    )
                if self.interval_of(ns, metric) <= 0:
                    raise ValueError(
                        f"scrapeInterval of {ns.name}/{metric.name} must be > 0"
                    )
        return self

    def interval_of(self, ns: NamespaceConfig, metric: MetricConfig) -> int:
        return metric.scrape_interval or ns.scrape_interval or self.scrape_interval

    def period_of(self, ns: NamespaceConfig, metric: MetricConfig) -> int:
        return metric.period or ns.period

    def intervals(self) -> list[int]:
        """Distinct scrape intervals across every configured metric."""
        return sorted(
            {self.interval_of(ns, m) for ns in self.namespaces for m in ns.metrics}
        )


class ScrapeConfigProvider:
    """Loads the scrape configuration file and keeps the last good copy."""

    def __init__(self, path: str | None = None):
        self.path = Path(path or get_settings().SCRAPE_CONFIG_PATH)
        self._config: ScrapeConfig | None = None
        self._lock = Lock()

    def load(self) -> ScrapeConfig:
        """Parse the file. Raises ConfigurationError on any failure."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(
                f"Cannot read scrape config {self.path}: {exc}",
                details={"path": str(self.path)},
            ) from exc
        try:
            config = ScrapeConfig.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ConfigurationError(
                f"Invalid scrape config {self.path}: {exc}",
                details={"path": str(self.path)},
            ) from exc
        with self._lock:
            self._config = config
        logger.info(
            "scrape_config_loaded",
            path=str(self.path),
            regions=config.regions,
            namespaces=len(config.namespaces),
        )
        return config

    def refresh(self) -> ScrapeConfig:
        """Re-read the file, falling back to the last good config on failure."""
        try:
            return self.load()
        except ConfigurationError as exc:
            if self._config is None:
                raise
            logger.error("scrape_config_refresh_failed", error=exc.message)
            return self._config

    def get_scrape_config(self) -> ScrapeConfig:
        with self._lock:
            config = self._config
        if config is None:
            return self.load()
        return config

    def set_scrape_config(self, config: ScrapeConfig) -> None:
        with self._lock:
            self._config = config
