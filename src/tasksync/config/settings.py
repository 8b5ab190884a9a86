"""Application configuration settings."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .schema import SyncConfig, ScheduleConfig


class DatabaseSettings(BaseSettings):
    """Database configuration."""

    url: str = Field(default="sqlite:///./data/tasksync.db")

    model_config = SettingsConfigDict(env_prefix="DB_")


class SyncSettings(BaseSettings):
    """Reconciliation settings read from the environment.

    Only this class and the config loader look at the process environment;
    the sync engine receives a plain ``SyncConfig`` built from it.
    """

    api_base_url: str = Field(default="http://localhost:3000/api")
    batch_size: int = Field(default=10)
    max_retries: int = Field(default=5)
    request_timeout: float = Field(default=15.0)
    connectivity_timeout: float = Field(default=5.0)
    transport_max_attempts: int = Field(default=2)
    transport_retry_delay: float = Field(default=1.0)

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    def to_config(self) -> SyncConfig:
        """Build the immutable config value passed to the engine."""
        return SyncConfig(**self.model_dump())


class ServerSettings(BaseSettings):
    """Remote batch server configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    database_url: str = Field(default="sqlite:///./data/tasksync_server.db")

    model_config = SettingsConfigDict(env_prefix="SERVER_")


class SchedulingSettings(BaseSettings):
    """Scheduling configuration."""

    enabled: bool = Field(default=False)
    sync_interval_minutes: int = Field(default=5)

    model_config = SettingsConfigDict(env_prefix="SCHEDULE_")

    def to_config(self) -> ScheduleConfig:
        return ScheduleConfig(enabled=self.enabled, interval_minutes=self.sync_interval_minutes)


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    format: str = Field(default="json")
    file_path: Optional[str] = Field(default="./logs/tasksync.log")

    model_config = SettingsConfigDict(env_prefix="LOG_")


class AppSettings(BaseSettings):
    """Main application settings."""

    name: str = Field(default="tasksync")
    version: str = Field(default="1.0.0")
    environment: str = Field(default="development")
    http_host: str = Field(default="0.0.0.0")
    http_port: int = Field(default=8080)

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    scheduling: SchedulingSettings = Field(default_factory=SchedulingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = AppSettings()


def get_settings() -> AppSettings:
    """Get application settings."""
    return settings


def reload_settings() -> AppSettings:
    """Re-read the environment, replacing the global settings instance."""
    global settings
    settings = AppSettings()
    return settings
