"""
Configuration module for the event table reservation service.

Loads environment variables and provides configuration settings including
payment provider credentials and hold/retry tuning.
"""
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        database_url: SQLAlchemy connection string
        stripe_secret_key: Stripe API secret key
        stripe_webhook_secret: Signing secret for the Stripe webhook endpoint
        currency: ISO currency code charged for every reservation
        hold_minutes: How long a HOLD blocks its tables before payment
    """

    # Database configuration
    database_url: str = Field(
        alias="DATABASE_URL",
        description="SQLAlchemy connection string"
    )

    # Stripe configuration
    stripe_secret_key: Optional[str] = Field(
        default=None,
        alias="STRIPE_SECRET_KEY",
        description="Stripe secret API key"
    )

    stripe_webhook_secret: Optional[str] = Field(
        default=None,
        alias="STRIPE_WEBHOOK_SECRET",
        description="Stripe webhook signing secret"
    )

    payment_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        alias="PAYMENT_TIMEOUT_SECONDS",
        description="HTTP timeout for payment provider calls"
    )

    # Reservation policy
    currency: str = Field(
        default="gbp",
        min_length=3,
        max_length=3,
        alias="CURRENCY",
        description="Currency code for reservation totals"
    )

    hold_minutes: int = Field(
        default=10,
        gt=0,
        alias="HOLD_MINUTES",
        description="Minutes a HOLD reservation blocks its tables"
    )

    hold_max_attempts: int = Field(
        default=4,
        ge=1,
        le=10,
        alias="HOLD_MAX_ATTEMPTS",
        description="Optimistic commit attempts before giving up with a conflict"
    )

    hold_retry_backoff_seconds: float = Field(
        default=0.05,
        ge=0,
        alias="HOLD_RETRY_BACKOFF_SECONDS",
        description="Base delay for exponential backoff between commit attempts"
    )

    expiry_sweep_interval_seconds: int = Field(
        default=60,
        gt=0,
        alias="EXPIRY_SWEEP_INTERVAL_SECONDS",
        description="Interval of the HOLD -> EXPIRED sweep job"
    )

    # Runtime
    environment: str = Field(
        default="development",
        alias="ENVIRONMENT",
        description="development, production or test"
    )

    log_level: Optional[str] = Field(
        default=None,
        alias="LOG_LEVEL",
        description="Override of the environment's default log level"
    )

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get or create the global settings instance.

    Returns:
        Settings instance with loaded configuration

    Raises:
        ValueError: If DATABASE_URL is not set
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
