# backend/app/core/config.py
"""
Application settings for the driving-school booking backend.

All configuration is read once from environment variables (and an optional
``.env`` file) and handed to components by constructor injection.
"""

import logging
import os
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


PROD_ENVIRONMENTS = {"prod", "production", "live"}


class Settings(BaseSettings):
    environment: str = "development"
    database_url: str = Field(
        default="sqlite:///./driving_school.db",
        description="SQLAlchemy URL for the bookings and quota ledger store",
    )

    # External calendar
    google_calendar_base_url: str = "https://www.googleapis.com/calendar/v3"
    google_calendar_access_token: Optional[SecretStr] = Field(
        default=None,
        description="Bearer token for the admin calendar; the fake calendar is used when unset",
    )
    google_calendar_user_access_token: Optional[SecretStr] = None
    admin_calendar_id: str = "primary"
    calendar_timeout_seconds: float = 10.0
    calendar_time_zone: str = "Australia/Sydney"

    # Booking rules
    booking_buffer_minutes: int = Field(default=15, ge=0)
    booking_hours_rounding: Literal["ceil", "exact"] = "ceil"
    cancellation_reason_min_length: int = 10

    # Resilience for calendar calls
    calendar_rate_limit_max_requests: int = Field(default=100, ge=1)
    calendar_rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    calendar_retry_max_retries: int = Field(default=3, ge=0)
    calendar_retry_base_delay_seconds: float = 1.0
    calendar_retry_max_delay_seconds: float = 30.0
    calendar_retry_backoff: Literal["fixed", "linear", "exponential"] = "exponential"
    calendar_breaker_failure_threshold: int = Field(default=5, ge=1)
    calendar_breaker_recovery_timeout_seconds: float = 60.0
    calendar_breaker_success_threshold: int = Field(default=3, ge=1)

    # Notifications
    booking_notification_url: Optional[str] = None
    notification_timeout_seconds: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return (value or "development").strip().lower()

    @property
    def is_production(self) -> bool:
        return self.environment in PROD_ENVIRONMENTS

    @property
    def is_testing(self) -> bool:
        return is_running_tests()


settings = Settings()
