"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
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
    POSTGRES_DB: str = Field(default="health_ingest")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)
    # Full SQLAlchemy URL; overrides the POSTGRES_* parts when set.
    DATABASE_URL: Optional[str] = Field(default=None)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text
    # Level for the ingest pipeline and webhook routers; falls back to LOG_LEVEL.
    INGEST_LOG_LEVEL: Optional[str] = Field(default=None)

    # Cache Configuration
    CACHE_TTL_DEFAULT: int = Field(default=300)  # 5 minutes
    READINESS_CACHE_PREFIX: str = Field(default="readiness")

    # Ingestion pipeline
    # Upper bound on concurrent per-point writes within one metric envelope.
    INGEST_MAX_WORKERS: int = Field(default=4, ge=1, le=32)
    # Trailing window (days) scanned for computed body-fat percentage.
    INGEST_BODY_FAT_LOOKBACK_DAYS: int = Field(default=7, ge=1)
    # Comma-separated canonical kinds. Blocklist wins over allowlist;
    # an empty allowlist routes every known kind.
    INGEST_ROUTING_ALLOWLIST: str = Field(default="")
    INGEST_ROUTING_BLOCKLIST: str = Field(default="")
    # How much of a rejected raw body is echoed back / logged for diagnosis.
    INGEST_DIAGNOSTIC_BODY_LIMIT: int = Field(default=500)

    # Junction webhooks (svix-signed)
    JUNCTION_WEBHOOK_SECRET: Optional[str] = Field(default=None)
    JUNCTION_SIGNATURE_TOLERANCE_S: int = Field(default=300)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )

    @property
    def routing_allowlist(self) -> List[str]:
        return [t.strip() for t in self.INGEST_ROUTING_ALLOWLIST.split(",") if t.strip()]

    @property
    def routing_blocklist(self) -> List[str]:
        return [t.strip() for t in self.INGEST_ROUTING_BLOCKLIST.split(",") if t.strip()]


# Global settings instance
settings = Settings()
