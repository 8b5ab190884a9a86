"""Configuration package for the sync client."""

from .schema import (
    SyncConfig,
    ScheduleConfig,
    ClientConfig,
    CLIENT_CONFIG_EXAMPLE
)

from .settings import (
    DatabaseSettings,
    SyncSettings,
    ServerSettings,
    SchedulingSettings,
    LoggingSettings,
    AppSettings,
    get_settings,
    reload_settings
)

from .loader import (
    ConfigLoader,
    ConfigurationError,
    load_config_from_env
)

__all__ = [
    # Value objects
    "SyncConfig",
    "ScheduleConfig",
    "ClientConfig",
    "CLIENT_CONFIG_EXAMPLE",

    # Environment settings
    "DatabaseSettings",
    "SyncSettings",
    "ServerSettings",
    "SchedulingSettings",
    "LoggingSettings",
    "AppSettings",
    "get_settings",
    "reload_settings",

    # Loading
    "ConfigLoader",
    "ConfigurationError",
    "load_config_from_env"
]
