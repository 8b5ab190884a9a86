"""Configuration schema definitions for the sync client."""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator


class SyncConfig(BaseModel):
    """Immutable reconciliation settings handed to the engine and transport."""

    model_config = ConfigDict(frozen=True)

    api_base_url: str = Field(default="http://localhost:3000/api", description="Remote API base URL")
    batch_size: int = Field(default=10, description="Queue items per batch request")
    max_retries: int = Field(default=5, description="Failures before an item is dropped as permanent")

    # Network
    request_timeout: float = Field(default=15.0, description="Batch request timeout in seconds")
    connectivity_timeout: float = Field(default=5.0, description="Health check timeout in seconds")
    transport_max_attempts: int = Field(default=2, description="Attempts per batch before the batch fails")
    transport_retry_delay: float = Field(default=1.0, description="Delay between batch attempts in seconds")

    @field_validator('api_base_url')
    @classmethod
    def validate_api_base_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_base_url must be an http(s) URL")
        return v.rstrip('/')

    @field_validator('batch_size', 'max_retries', 'transport_max_attempts')
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator('request_timeout', 'connectivity_timeout')
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator('transport_retry_delay')
    @classmethod
    def validate_delay(cls, v):
        if v < 0:
            raise ValueError("Retry delay cannot be negative")
        return v

    @property
    def batch_url(self) -> str:
        return f"{self.api_base_url}/sync/batch"

    @property
    def health_url(self) -> str:
        return f"{self.api_base_url}/health"


class ScheduleConfig(BaseModel):
    """Optional periodic sync trigger."""

    enabled: bool = Field(default=False, description="Run passes on an interval")
    interval_minutes: int = Field(default=5, description="Minutes between passes")

    @field_validator('interval_minutes')
    @classmethod
    def validate_interval(cls, v):
        if v < 1:
            raise ValueError("Interval must be at least 1 minute")
        return v


class ClientConfig(BaseModel):
    """Root configuration for a sync client."""

    # Metadata
    version: str = Field(default="1.0.0", description="Configuration version")
    created_at: datetime = Field(default_factory=datetime.now, description="When config was created")

    # Environment
    environment: str = Field(default="development", description="Environment (development, staging, production)")

    database_url: Optional[str] = Field(None, description="Local database URL override")
    sync: SyncConfig = Field(default_factory=SyncConfig, description="Reconciliation settings")
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig, description="Periodic trigger settings")

    # Logging configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Logging format (json, console)")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        valid_envs = ['development', 'staging', 'production']
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of: {valid_envs}")
        return v.lower()

    def sync_config(self, fallback: SyncConfig) -> SyncConfig:
        """Sync settings given in this config, the rest taken from ``fallback``."""
        return _overlay(self.sync, fallback)

    def schedule_config(self, fallback: ScheduleConfig) -> ScheduleConfig:
        """Schedule settings given in this config, the rest taken from ``fallback``."""
        return _overlay(self.schedule, fallback)


def _overlay(explicit: BaseModel, fallback: BaseModel):
    # Only keys that were actually set in the file or env override win
    values = fallback.model_dump()
    values.update(explicit.model_dump(include=explicit.model_fields_set))
    return type(fallback)(**values)


# Example configuration for documentation
CLIENT_CONFIG_EXAMPLE = ClientConfig(
    environment="development",
    database_url="sqlite:///./data/tasksync.db",
    sync=SyncConfig(
        api_base_url="http://localhost:3000/api",
        batch_size=10,
        max_retries=5
    ),
    schedule=ScheduleConfig(enabled=True, interval_minutes=5)
)
