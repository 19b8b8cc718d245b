from __future__ import annotations

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    api_key: str = "test-api-key"
    trusted_proxies: list[str] = Field(
        default_factory=lambda: ["127.0.0.1", "testclient"]
    )

    database_url: str = Field("sqlite:////tmp/advisory_test.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")

    redis_url: str = Field("redis://localhost:6379", alias="REDIS_URL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    stripe_secret_key: str = Field("sk_test_placeholder", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(
        "whsec_test_secret", alias="STRIPE_WEBHOOK_SECRET"
    )
    stripe_api_version: str = Field("2023-10-16", alias="STRIPE_API_VERSION")
    stripe_webhook_tolerance_s: int = Field(300, alias="STRIPE_WEBHOOK_TOLERANCE_S")
    site_url: str = Field("http://localhost:8888", alias="SITE_URL")

    # Amounts are in minor currency units (cents)
    currency: str = Field("usd", alias="CURRENCY")
    price_per_block: int = Field(2500, alias="PRICE_PER_BLOCK")
    retainer_price: int = Field(100000, alias="RETAINER_PRICE")
    chat_subscription_price: int = Field(1400, alias="CHAT_SUBSCRIPTION_PRICE")

    retainer_monthly_limit: int = Field(8, alias="RETAINER_MONTHLY_LIMIT")
    retainer_weekly_limit: int = Field(2, alias="RETAINER_WEEKLY_LIMIT")
    retainer_max_minutes: int = Field(60, alias="RETAINER_MAX_MINUTES")
    booking_max_retries: int = Field(
        3,
        alias="BOOKING_MAX_RETRIES",
        description="Attempts for a booking transaction that hits a version conflict",
    )

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
    )
