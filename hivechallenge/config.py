"""
Configuration for HiveChallenge.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="HIVECHALLENGE_", env_file=".env", extra="ignore"
    )

    # Database
    mongodb_url: str = Field("mongodb://localhost:27017", description="MongoDB connection URL")
    database_name: str = Field("hivechallenge", description="MongoDB database name")

    # Logging
    log_level: str = Field("INFO", description="Log level")
    log_to_file: bool = Field(False, description="Write JSON logs to a file")
    logs_path: str = Field("logs", description="Directory for log files")

    # Expiry sweeper
    sweep_interval: float = Field(30.0, gt=0, description="Seconds between sweeps")
    sweep_batch_size: int = Field(100, ge=1, le=1000, description="Challenges scanned per page")

    # Visibility index
    index_reconcile_interval: float = Field(60.0, gt=0, description="Seconds between index rebuilds")
    index_page_size: int = Field(200, ge=1, le=1000, description="Page size used by index rebuilds")

    # Challenges
    default_challenge_ttl: Optional[int] = Field(
        None, gt=0, description="Default lifetime in seconds; unset means no automatic expiry"
    )

    # Notifications
    notification_timeout: float = Field(5.0, gt=0, description="Per-delivery timeout in seconds")

    # Retries for reads and sweeper transitions
    read_retry_attempts: int = Field(3, ge=1, le=10)
    retry_backoff: float = Field(0.2, ge=0)

    # Telegram notifier (optional)
    api_id: Optional[int] = None
    api_hash: Optional[str] = None
    bot_token: Optional[str] = None
    notification_chat_id: Optional[int] = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def telegram_enabled(self) -> bool:
        """Whether enough credentials are present to run the Telegram notifier."""
        return all(
            value is not None
            for value in (self.api_id, self.api_hash, self.bot_token, self.notification_chat_id)
        )


class DatabaseConfig(BaseSettings):
    """MongoDB collection settings."""

    model_config = SettingsConfigDict(
        env_prefix="HIVECHALLENGE_DB_", env_file=".env", extra="ignore"
    )

    challenges_collection: str = "game_challenges"
    users_collection: str = "users"
    games_collection: str = "games"
    connection_timeout: int = Field(10, ge=1, description="Server selection timeout in seconds")
    enable_indexes: bool = True


@lru_cache
def get_config() -> AppConfig:
    """Get the cached application config."""
    return AppConfig()


@lru_cache
def get_db_config() -> DatabaseConfig:
    """Get the cached database config."""
    return DatabaseConfig()


def reset_config():
    """Drop cached configs so the environment is read again."""
    get_config.cache_clear()
    get_db_config.cache_clear()


def setup_directories():
    """Create directories the application writes to."""
    config = get_config()
    if config.log_to_file:
        Path(config.logs_path).mkdir(parents=True, exist_ok=True)
