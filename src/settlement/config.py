"""Runtime settings for the settlement service.

Settings are read from environment variables once per process. Secrets
(processor API keys) are not stored here; they are fetched from SSM
Parameter Store by the processor factory.
"""

import os
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Settlement configuration."""

    model_config = ConfigDict(frozen=True)

    environment: str = Field(default="dev", description="Environment name (dev, prod)")
    table_prefix: str = Field(
        default="settlement-dev", description="Prefix for DynamoDB table names"
    )
    payments_enabled: bool = Field(
        default=True, description="Whether real processor calls are made"
    )
    processor_timeout_seconds: float = Field(
        default=20.0, gt=0, description="Timeout for processor HTTP calls"
    )
    payout_delay_hours: int = Field(
        default=24, gt=0, description="Delay between check-in and host payout"
    )
    check_in_window_start_hour: int = Field(default=14, ge=0, le=23)
    check_in_window_end_hour: int = Field(default=23, ge=0, le=23)
    check_in_timezone: str = Field(
        default="UTC", description="IANA timezone for the check-in window"
    )
    default_currency: str = Field(default="usd")

    @property
    def ssm_prefix(self) -> str:
        """SSM parameter path prefix for this environment."""
        return f"/settlement/{self.environment}"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        environment = os.environ.get("ENVIRONMENT", "dev")
        return cls(
            environment=environment,
            table_prefix=os.environ.get(
                "DYNAMODB_TABLE_PREFIX", f"settlement-{environment}"
            ),
            payments_enabled=_env_bool("PAYMENTS_ENABLED", True),
            processor_timeout_seconds=float(
                os.environ.get("PROCESSOR_TIMEOUT_SECONDS", "20")
            ),
            payout_delay_hours=int(os.environ.get("PAYOUT_DELAY_HOURS", "24")),
            check_in_window_start_hour=int(
                os.environ.get("CHECK_IN_WINDOW_START_HOUR", "14")
            ),
            check_in_window_end_hour=int(
                os.environ.get("CHECK_IN_WINDOW_END_HOUR", "23")
            ),
            check_in_timezone=os.environ.get("CHECK_IN_TIMEZONE", "UTC"),
            default_currency=os.environ.get("DEFAULT_CURRENCY", "usd"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings (read once from the environment)."""
    return Settings.from_env()
