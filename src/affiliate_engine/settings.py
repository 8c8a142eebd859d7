"""Application settings and configuration."""

from decimal import Decimal
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

AFFILIATE_LEVELS = ("bronze", "silver", "gold")


class Settings(BaseSettings):
    """Engine configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AFFILIATE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "affiliate-engine"
    env: Literal["development", "production", "test"] = "development"

    # Database
    database_url: str = Field(
        default="sqlite:///./affiliate_engine.db",
        description="Ledger store connection URL",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        description="Log output format",
    )

    # Attribution
    click_retention_days: int = Field(
        default=30,
        ge=1,
        description="Unbound clicks older than this are ignored when linking signups",
    )
    referral_base_url: str = Field(
        default="http://localhost:3000/ref",
        description="Base URL used to build shareable referral links",
    )

    # Commissions
    eligibility_window_days: int = Field(
        default=90,
        ge=1,
        description="Days after a conversion during which a qualifying event must happen",
    )
    level_rates: dict[str, Decimal] = Field(
        default_factory=lambda: {
            "bronze": Decimal("25"),
            "silver": Decimal("50"),
            "gold": Decimal("50"),
        },
        description="Default commission rate (percent) per affiliate level",
    )
    silver_promotion_threshold: int = Field(
        default=5,
        ge=1,
        description="Confirmed author registrations that promote a bronze affiliate to silver",
    )
    sweep_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="Seconds between expiration sweeps when running on an interval",
    )

    # Withdrawals
    minimum_withdrawal: Decimal = Field(
        default=Decimal("50.00"),
        gt=0,
        description="Smallest amount an affiliate may withdraw (inclusive)",
    )

    # Notifications
    webhook_url: str | None = Field(
        default=None,
        description="Optional endpoint that receives engine events as JSON",
    )
    webhook_timeout_seconds: float = 5.0

    # Rate Limiting
    api_rate_limit: str = Field(
        default="200/minute",
        description="Default per-client limit for every API route",
    )
    click_rate_limit: str = "60/minute"
    rate_limit_storage_uri: str = Field(
        default="memory://",
        description="slowapi storage; use a shared store when running several API processes",
    )

    @field_validator("level_rates")
    @classmethod
    def _check_level_rates(cls, value: dict[str, Decimal]) -> dict[str, Decimal]:
        missing = [level for level in AFFILIATE_LEVELS if level not in value]
        if missing:
            raise ValueError(f"level_rates is missing levels: {', '.join(missing)}")
        for level, rate in value.items():
            if rate < 0 or rate > 100:
                raise ValueError(f"level rate for {level} must be between 0 and 100")
        return value


# Global settings instance
settings = Settings()
