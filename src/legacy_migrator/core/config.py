"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re
from datetime import timedelta

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        description="Async SQLAlchemy connection string (postgresql+asyncpg or sqlite+aiosqlite)",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # Migration file storage
    migration_upload_dir: str = Field(
        default="./data/uploads",
        description="Directory where submitted files are staged for processing",
    )
    migration_archive_dir: str = Field(
        default="./data/archive",
        description="Directory where processed files are archived",
    )
    migration_error_dir: str = Field(
        default="./data/errors",
        description="Directory for generated error reports",
    )
    migration_max_upload_mb: int = Field(
        default=500,
        description="Maximum size of an uploaded migration file in megabytes",
        gt=0,
    )

    # Migration engine
    migration_batch_size: int = Field(
        default=1000,
        description="Records per checkpointed batch",
        gt=0,
    )
    migration_max_retries: int = Field(
        default=3,
        description="Batch-level retries before a job is failed",
        gt=0,
    )
    migration_retry_backoff_seconds: float = Field(
        default=5.0,
        description="Linear backoff step between batch retries (retry count x step)",
        ge=0,
    )
    migration_rollback_window_days: int = Field(
        default=30,
        description="Days after submission during which a job can be rolled back",
        gt=0,
    )
    migration_stale_job_minutes: int = Field(
        default=120,
        description="Minutes without a checkpoint before a running job is considered interrupted",
        gt=0,
    )
    migration_recover_on_startup: bool = Field(
        default=True,
        description="Mark interrupted jobs as failed (and so restartable) on application start",
    )

    @property
    def migration_rollback_window(self) -> timedelta:
        """Rollback window as a timedelta."""
        return timedelta(days=self.migration_rollback_window_days)

    @property
    def migration_stale_after(self) -> timedelta:
        """Stale-job threshold as a timedelta."""
        return timedelta(minutes=self.migration_stale_job_minutes)

    @property
    def migration_max_upload_bytes(self) -> int:
        """Upload size limit in bytes."""
        return self.migration_max_upload_mb * 1024 * 1024

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
