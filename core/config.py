"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="wearable_ingest")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)
    # Full URL override (e.g. sqlite for local runs); built from POSTGRES_* when unset
    DATABASE_URL: Optional[str] = Field(default=None)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")
    CACHE_ENABLED: bool = Field(default=True)
    CACHE_TTL_DEFAULT: int = Field(default=300)  # 5 minutes
    CACHE_TTL_BODY_METRICS: int = Field(default=300)

    # Terra aggregator webhooks
    TERRA_SIGNING_SECRET: Optional[str] = Field(default=None)
    # Replayed deliveries (identical raw body) are short-circuited for this long
    WEBHOOK_DEDUPE_TTL_S: int = Field(default=3600)

    # Whoop direct integration
    WHOOP_CLIENT_ID: Optional[str] = Field(default=None)
    WHOOP_CLIENT_SECRET: Optional[str] = Field(default=None)
    WHOOP_API_BASE_URL: str = Field(default="https://api.prod.whoop.com/developer/v1")
    WHOOP_TOKEN_URL: str = Field(default="https://api.prod.whoop.com/oauth/oauth2/token")
    # Refresh stored access tokens this many seconds before they expire
    WHOOP_TOKEN_REFRESH_MARGIN_S: int = Field(default=600)

    # Outbound provider calls
    PROVIDER_API_TIMEOUT_S: float = Field(default=10.0)

    # Webhook journal retry processor
    WEBHOOK_MAX_RETRY_ATTEMPTS: int = Field(default=5)
    WEBHOOK_RETRY_BATCH_SIZE: int = Field(default=50)

    # Read-time aggregation
    SPARKLINE_POINTS: int = Field(default=7)
    BODY_METRICS_DEFAULT_DAYS: int = Field(default=90)

    # Token Encryption
    TOKEN_ENCRYPTION_KEY: Optional[str] = Field(default=None)

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)
    API_RELOAD: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)
    EXPOSE_API_DOCS: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions
    SENTRY_PROFILES_SAMPLE_RATE: float = Field(default=0.1)


# Global settings instance
settings = Settings()
