# callbilling/config.py
from decimal import Decimal
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    ENV: str = "dev"
    APP_NAME: str = "Call Billing Service"

    # DB URL – SQLite locally, Postgres in production
    DATABASE_URL: str = "sqlite:///./callbilling.db"

    LOG_LEVEL: str = "INFO"

    # Shared secret the telephony provider sends with every webhook
    WEBHOOK_SECRET: Optional[str] = None
    WEBHOOK_TOKEN_HEADER: str = "X-Webhook-Token"

    # Elevated-privilege key for the admin credit/agent endpoints
    ADMIN_API_KEY: Optional[str] = None

    # Provider REST API, used to pull calls whose webhooks never arrived
    PROVIDER_API_KEY: Optional[str] = None
    PROVIDER_API_BASE_URL: str = "https://api.retellai.com/v2"
    PROVIDER_TIMEOUT_SECONDS: float = 15.0

    # Alert thresholds applied to newly provisioned credit accounts
    DEFAULT_WARNING_THRESHOLD: Decimal = Decimal("10.00")
    DEFAULT_CRITICAL_THRESHOLD: Decimal = Decimal("2.00")

    CORS_ALLOW_ORIGINS: List[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

_settings: Optional[Settings] = None

def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
