"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Airtime Subscription Billing API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Database - REQUIRED
    DATABASE_URL: str
    DATABASE_ECHO: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Tracing (optional OTLP collector)
    OTLP_ENDPOINT: Optional[str] = None

    # CORS
    CORS_ORIGINS: list[str] = []

    # Telco aggregator webhook
    # Shared HMAC-SHA256 secret used to sign the x-signature header.
    TELCO_WEBHOOK_SECRET: str = ""
    # Accept unsigned webhooks when no secret is configured.
    # Never honoured when ENVIRONMENT is production.
    ALLOW_UNSIGNED_WEBHOOKS: bool = True

    # Identity
    PHONE_COUNTRY_CODE: str = "234"
    DEFAULT_USER_TIMEZONE: str = "Africa/Lagos"

    # Subscription status
    RENEWAL_REMINDER_DAYS: int = 3

    # Admin routes (x-admin-token header). Empty disables them.
    ADMIN_API_TOKEN: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"

    @property
    def unsigned_webhooks_allowed(self) -> bool:
        """Whether webhooks may skip signature checks when no secret is set."""
        return self.ALLOW_UNSIGNED_WEBHOOKS and not self.is_production


settings = Settings()
