import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues.

    SQLite is meant for local development and tests only. Point DATABASE_URL
    at PostgreSQL for anything shared.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        return db_url

    db_path = Path(__file__).parent.parent.parent / "coachcore.db"
    abs_path = db_path.resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.warning(f"Using SQLite database (LOCAL DEV ONLY): {db_url}")
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(
        default=None,
        validation_alias="LOG_FILE",
        description="Also write logs to this file (rotated daily, kept a week)",
    )
    remote_api_url: str = Field(
        default="http://localhost:54321",
        validation_alias="REMOTE_API_URL",
        description="Base URL of the remote data service (PostgREST-style)",
    )
    remote_api_key: str = Field(default="", validation_alias="REMOTE_API_KEY")
    remote_http_timeout: float = Field(
        default=30.0,
        validation_alias="REMOTE_HTTP_TIMEOUT",
        description="Per-request timeout for the HTTP remote store, in seconds",
    )
    run_flush_debounce_seconds: float = Field(
        default=0.7,
        validation_alias="RUN_FLUSH_DEBOUNCE_SECONDS",
        description="Inactivity window before dirty set logs are flushed",
    )
    run_tick_seconds: float = Field(
        default=1.0,
        validation_alias="RUN_TICK_SECONDS",
        description="Elapsed-time ticker interval while a run session is active",
    )
    client_stats_window_days: int = Field(default=28, validation_alias="CLIENT_STATS_WINDOW_DAYS")
    client_stats_session_limit: int = Field(default=80, validation_alias="CLIENT_STATS_SESSION_LIMIT")
    client_stats_volume_session_limit: int = Field(default=30, validation_alias="CLIENT_STATS_VOLUME_SESSION_LIMIT")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(sorted(valid_levels))}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("run_flush_debounce_seconds", "run_tick_seconds")
    @classmethod
    def validate_positive_interval(cls, value: float) -> float:
        """Timer intervals must be positive."""
        if value <= 0:
            raise ValueError(f"Interval must be positive, got {value}")
        return value

    @field_validator("remote_api_url")
    @classmethod
    def validate_remote_api_url(cls, value: str) -> str:
        """Strip the trailing slash so paths can be joined safely."""
        return value.rstrip("/")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
