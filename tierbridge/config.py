"""
Configuration settings for TierBridge.
Loads from environment variables with validation.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "TierBridge"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0

    # Shopify
    SHOPIFY_API_SECRET: str = ""
    SHOPIFY_API_VERSION: str = "2025-01"
    SHOPIFY_TIMEOUT_SECONDS: float = 30.0

    # Tier engine
    TIER_TAG_PREFIX: str = "tier:"
    SWEEP_PAGE_SIZE: int = 50
    SWEEP_CONCURRENCY: int = 1

    # Webhook de-duplication window (Shopify redelivers for up to 48h)
    WEBHOOK_DEDUP_TTL_SECONDS: int = 86400

    def validate_production_settings(self):
        """Validate critical settings for production deployment."""
        if self.SWEEP_PAGE_SIZE <= 0 or self.SWEEP_PAGE_SIZE > 250:
            raise ValueError("SWEEP_PAGE_SIZE must be between 1 and 250 (Shopify page limit)")
        if self.SWEEP_CONCURRENCY <= 0:
            raise ValueError("SWEEP_CONCURRENCY must be at least 1")
        if self.REDIS_SOCKET_TIMEOUT_SECONDS <= 0:
            raise ValueError("REDIS_SOCKET_TIMEOUT_SECONDS must be positive")
        if not self.DEBUG and not self.SHOPIFY_API_SECRET:
            raise ValueError(
                "SHOPIFY_API_SECRET is required in production. "
                "Webhook signatures cannot be verified without it."
            )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings loader with production validation."""
    settings = Settings()
    settings.validate_production_settings()
    return settings
