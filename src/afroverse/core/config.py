"""Application configuration using Pydantic BaseSettings."""

import logging
from datetime import timedelta

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3001, alias="PORT")
    api_url: str = Field(default="http://localhost:3001", alias="API_URL")

    # Generation Provider (Replicate)
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_model_version: str = Field(default="google/nano-banana", alias="REPLICATE_MODEL_VERSION")
    replicate_high_quality_model: str = Field(
        default="google/nano-banana-pro", alias="REPLICATE_HIGH_QUALITY_MODEL"
    )
    provider_timeout_seconds: float = Field(default=120.0, alias="PROVIDER_TIMEOUT_SECONDS")

    # Blob Store
    blob_backend: str = Field(default="local", alias="BLOB_BACKEND")
    local_blob_root: str = Field(default="./var/blobs", alias="LOCAL_BLOB_ROOT")
    pinata_jwt: str = Field(default="", alias="PINATA_JWT")
    pinata_gateway: str = Field(default="gateway.pinata.cloud", alias="PINATA_GATEWAY")

    # Job Execution
    lock_lease_minutes: int = Field(default=15, alias="LOCK_LEASE_MINUTES")
    default_max_attempts: int = Field(default=5, alias="DEFAULT_MAX_ATTEMPTS")
    max_concurrent_generations: int = Field(default=3, alias="MAX_CONCURRENT_GENERATIONS")

    # Recovery Sweep
    recovery_batch_size: int = Field(default=100, alias="RECOVERY_BATCH_SIZE")
    recovery_interval_seconds: int = Field(default=60, alias="RECOVERY_INTERVAL_SECONDS")
    trigger_mode: str = Field(default="inprocess", alias="TRIGGER_MODE")
    cron_secret: str = Field(default="", alias="CRON_SECRET")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def lock_lease(self) -> timedelta:
        """Duration after which a held lock may be reclaimed."""
        return timedelta(minutes=self.lock_lease_minutes)

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with clear error messages if configuration is incomplete.
        Validation is skipped in test environments.
        """
        if self.blob_backend not in ("local", "pinata"):
            raise ValueError(f"BLOB_BACKEND must be 'local' or 'pinata', got {self.blob_backend!r}")

        if self.trigger_mode not in ("inprocess", "http"):
            raise ValueError(f"TRIGGER_MODE must be 'inprocess' or 'http', got {self.trigger_mode!r}")

        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.cron_secret:
            missing.append("CRON_SECRET: Shared secret expected from the recovery scheduler")

        if not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from https://replicate.com/account/api-tokens"
            )

        if self.blob_backend == "pinata" and not self.pinata_jwt:
            missing.append("PINATA_JWT: Get your JWT token from https://pinata.cloud")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    if settings.app_env == "production":
        renderer_chain = [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer_chain = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            *renderer_chain,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
