from functools import lru_cache
from threading import Lock
from typing import Optional
import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for the TradiePay webhook service.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "TradiePay"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False

    # Persistence store (Supabase Postgres in production)
    DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    # Platform-domain secret (direct subscription billing endpoint)
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    # Connected-account domain secret (per-business Connect endpoint)
    STRIPE_CONNECT_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_API_VERSION: Optional[str] = None
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    STRIPE_PRICE_ID_SOLO: Optional[str] = None
    STRIPE_PRICE_ID_CREW: Optional[str] = None
    STRIPE_PRICE_ID_PRO: Optional[str] = None
    STRIPE_PRICE_ID_SOLO_ANNUAL: Optional[str] = None
    STRIPE_PRICE_ID_CREW_ANNUAL: Optional[str] = None
    STRIPE_PRICE_ID_PRO_ANNUAL: Optional[str] = None

    # Outbound email (Resend). Absence disables notifications.
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    NOTIFICATION_FROM_EMAIL: str = "TradieMate <notifications@tradiemate.com.au>"
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    # Settlement write policy
    OPTIMISTIC_WRITE_MAX_ATTEMPTS: int = 3
    WEBHOOK_EVENT_RETENTION_DAYS: int = 90

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """
        Centralized validation orchestrator.
        Request-time requirements (Stripe keys, database) are enforced by
        `missing_webhook_config` so a misconfigured deployment answers 500
        instead of failing to boot.
        """
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )
        if self.TESTING:
            return self

        self._validate_billing_config()
        self._validate_notification_config()
        return self

    def _validate_billing_config(self) -> None:
        """Validates Stripe credentials and write policy."""
        if self.STRIPE_WEBHOOK_TOLERANCE_SECONDS <= 0:
            raise ValueError("STRIPE_WEBHOOK_TOLERANCE_SECONDS must be > 0.")
        if self.OPTIMISTIC_WRITE_MAX_ATTEMPTS < 1:
            raise ValueError("OPTIMISTIC_WRITE_MAX_ATTEMPTS must be >= 1.")

        if self.is_production:
            if self.STRIPE_SECRET_KEY and self.STRIPE_SECRET_KEY.startswith("sk_test"):
                raise ValueError(
                    "STRIPE_SECRET_KEY must be a live key (sk_live_...) in production."
                )

    def _validate_notification_config(self) -> None:
        if self.NOTIFICATION_TIMEOUT_SECONDS <= 0:
            raise ValueError("NOTIFICATION_TIMEOUT_SECONDS must be > 0.")
        if self.NOTIFICATION_TIMEOUT_SECONDS > 30:
            raise ValueError("NOTIFICATION_TIMEOUT_SECONDS must be <= 30.")

    def missing_webhook_config(self) -> list[str]:
        """Names of required settings that are unset."""
        missing = []
        if not self.STRIPE_SECRET_KEY:
            missing.append("STRIPE_SECRET_KEY")
        if not (self.STRIPE_WEBHOOK_SECRET or self.STRIPE_CONNECT_WEBHOOK_SECRET):
            missing.append("STRIPE_WEBHOOK_SECRET")
        if not self.DATABASE_URL:
            missing.append("DATABASE_URL")
        return missing

    @property
    def price_tier_map(self) -> dict[str, str]:
        """Stripe price ID -> plan tier, monthly and annual."""
        pairs = (
            (self.STRIPE_PRICE_ID_SOLO, "solo"),
            (self.STRIPE_PRICE_ID_CREW, "crew"),
            (self.STRIPE_PRICE_ID_PRO, "pro"),
            (self.STRIPE_PRICE_ID_SOLO_ANNUAL, "solo"),
            (self.STRIPE_PRICE_ID_CREW_ANNUAL, "crew"),
            (self.STRIPE_PRICE_ID_PRO_ANNUAL, "pro"),
        )
        return {price_id: tier for price_id, tier in pairs if price_id}

    @property
    def is_production(self) -> bool:
        """True only when ENVIRONMENT is explicitly set to 'production'."""
        return self.ENVIRONMENT == ENV_PRODUCTION
