# tinkertank/core/config.py
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import pytz


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment name")

    # Database
    database_url: str = Field(
        default="sqlite:///./tinkertank.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = False

    # Redis (locks, cart storage, Celery broker)
    redis_url: str = "redis://localhost:6379/0"
    lock_namespace: str = Field(default="tinkertank", description="Prefix for Redis lock keys")

    # Scheduling
    location_timezone: str = Field(
        default="Australia/Sydney",
        description="IANA timezone assigned to locations that do not declare one",
    )
    default_location_id: Optional[str] = Field(
        default=None,
        description="Location used for order items that carry no location of their own",
    )

    # Reconciliation
    reconcile_lock_ttl_s: int = Field(default=60, ge=1)
    reconcile_lock_wait_s: float = Field(default=5.0, ge=0)

    # Stripe Configuration
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe webhook signing secret",
    )
    stripe_currency: str = Field(default="aud", description="Default currency for payments")
    stripe_timeout_s: int = Field(default=8, ge=1)
    stripe_retrieve_max_attempts: int = Field(default=3, ge=1)
    stripe_retrieve_backoff_s: float = Field(default=0.5, ge=0)

    # Cart
    gst_rate: float = Field(default=0.10, ge=0, description="GST applied on top of cart subtotal")
    cart_ttl_s: int = Field(default=7 * 24 * 3600, ge=60)

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("location_timezone")
    @classmethod
    def _validate_location_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key.get_secret_value())

    def get_database_url(self) -> str:
        """Return the database URL, preferring TEST_DATABASE_URL while testing."""
        if is_running_tests():
            return os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
        return self.database_url


settings = Settings()
