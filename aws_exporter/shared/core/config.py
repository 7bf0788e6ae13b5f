from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the process settings."""
    return Settings()


class Settings(BaseSettings):
    """
    Process-level configuration for the exporter.
    Uses Pydantic-Settings for environment variable parsing from .env.

    What to scrape lives in the scrape configuration file (see
    `aws_exporter.shared.core.scrape_config`); this class only carries how the
    process itself runs.
    """

    APP_NAME: str = "aws-exporter"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    TESTING: bool = False

    SCRAPE_CONFIG_PATH: str = "conf/scrape_config.json"

    # Outer re-evaluation of the scrape task registry
    TASK_SETUP_INTERVAL_SECONDS: int = 900
    TASK_SETUP_INITIAL_DELAY_SECONDS: int = 5

    # Admission control: at most RATE_LIMIT_MAX_CALLS completed calls per
    # operation inside any RATE_LIMIT_WINDOW_SECONDS window.
    RATE_LIMIT_MAX_CALLS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: float = 1.0
    RATE_LIMIT_OVERRIDES: dict[str, int] = Field(
        default_factory=lambda: {
            "CloudWatchClient/getMetricData": 50,
            "CloudWatchClient/listMetrics": 25,
            "CloudWatchClient/describeAlarms": 9,
        }
    )

    # AWS client tuning
    AWS_ENDPOINT_URL: Optional[str] = None
    AWS_READ_TIMEOUT_SECONDS: int = 30
    AWS_CONNECT_TIMEOUT_SECONDS: int = 10
    AWS_MAX_ATTEMPTS: int = 3
    AWS_ASSUME_ROLE_SESSION_SECONDS: int = 3600
    # Upper bound on pages read by one ListMetrics or Config discovery scan
    AWS_LIST_MAX_PAGES: int = 500

    ALERT_FORWARD_TIMEOUT_SECONDS: float = 10.0

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        if self.RATE_LIMIT_MAX_CALLS <= 0:
            raise ValueError("RATE_LIMIT_MAX_CALLS must be > 0")
        if self.RATE_LIMIT_WINDOW_SECONDS <= 0:
            raise ValueError("RATE_LIMIT_WINDOW_SECONDS must be > 0")
        bad = [op for op, limit in self.RATE_LIMIT_OVERRIDES.items() if limit <= 0]
        if bad:
            raise ValueError(f"RATE_LIMIT_OVERRIDES must be > 0 for {bad}")
        if self.AWS_LIST_MAX_PAGES <= 0:
            raise ValueError("AWS_LIST_MAX_PAGES must be > 0")
        if self.TASK_SETUP_INTERVAL_SECONDS <= 0:
            raise ValueError("TASK_SETUP_INTERVAL_SECONDS must be > 0")
        return self

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)
