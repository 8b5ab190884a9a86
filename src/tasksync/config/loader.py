"""Configuration loader for JSON/YAML files and environment variables."""

import os
import json
import yaml
from pathlib import Path
from typing import Dict, Any, Union, List

from pydantic import ValidationError

from .schema import ClientConfig
from ..utils.logging import get_logger


class ConfigurationError(Exception):
    """Raised when configuration loading fails."""
    pass


# TASKSYNC_<KEY> -> (section, key, type); section None means top level
_ENV_OVERRIDES = {
    'TASKSYNC_DATABASE_URL': (None, 'database_url', str),
    'TASKSYNC_LOG_LEVEL': (None, 'log_level', str),
    'TASKSYNC_LOG_FORMAT': (None, 'log_format', str),
    'TASKSYNC_ENVIRONMENT': (None, 'environment', str),
    'TASKSYNC_API_BASE_URL': ('sync', 'api_base_url', str),
    'TASKSYNC_BATCH_SIZE': ('sync', 'batch_size', int),
    'TASKSYNC_MAX_RETRIES': ('sync', 'max_retries', int),
    'TASKSYNC_REQUEST_TIMEOUT': ('sync', 'request_timeout', float),
    'TASKSYNC_SCHEDULE_ENABLED': ('schedule', 'enabled', bool),
    'TASKSYNC_SCHEDULE_INTERVAL_MINUTES': ('schedule', 'interval_minutes', int),
}


class ConfigLoader:
    """Loads and validates configuration from various sources."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def load_from_file(self, file_path: Union[str, Path]) -> ClientConfig:
        """Load configuration from JSON or YAML file.

        Args:
            file_path: Path to configuration file

        Returns:
            Validated ClientConfig object

        Raises:
            ConfigurationError: If file cannot be loaded or validated
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        self.logger.info("Loading configuration from file", file_path=str(file_path))

        suffix = file_path.suffix.lower()
        if suffix not in ['.yaml', '.yml', '.json']:
            raise ConfigurationError(f"Unsupported file format: {file_path.suffix}")

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                if suffix == '.json':
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}")

        config = self.load_from_dict(data or {})

        self.logger.info(
            "Configuration loaded successfully",
            environment=config.environment,
            api_base_url=config.sync.api_base_url
        )

        return config

    def load_from_dict(self, data: Dict[str, Any]) -> ClientConfig:
        """Load configuration from dictionary.

        Args:
            data: Configuration data as dictionary

        Returns:
            Validated ClientConfig object
        """
        data = self._apply_env_overrides(data)

        try:
            return ClientConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    def save_to_file(self, config: ClientConfig, file_path: Union[str, Path], format: str = 'yaml'):
        """Save configuration to file.

        Args:
            config: Configuration to save
            file_path: Output file path
            format: Output format ('yaml' or 'json')
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        data = config.model_dump(mode='json')

        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                if format.lower() == 'yaml':
                    yaml.dump(data, f, default_flow_style=False, indent=2, allow_unicode=True)
                elif format.lower() == 'json':
                    json.dump(data, f, indent=2, default=str)
                else:
                    raise ConfigurationError(f"Unsupported format: {format}")
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration: {e}")

        self.logger.info("Configuration saved successfully", file_path=str(file_path))

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration data.

        Environment variables use the format: TASKSYNC_<KEY>
        For example: TASKSYNC_DATABASE_URL, TASKSYNC_BATCH_SIZE
        """
        data = {**data}
        applied = []

        for env_name, (section, key, cast) in _ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or raw == '':
                continue

            try:
                if cast is bool:
                    value = raw.lower() in ['true', '1', 'yes']
                else:
                    value = cast(raw)
            except ValueError:
                self.logger.warning("Invalid environment override, ignoring", variable=env_name, value=raw)
                continue

            if section is None:
                data[key] = value
            else:
                data[section] = {**(data.get(section) or {}), key: value}
            applied.append(env_name)

        if applied:
            self.logger.info("Applied environment variable overrides", overrides=applied)

        return data

    def validate_config(self, config: ClientConfig) -> List[str]:
        """Validate configuration and return list of warnings/issues."""
        warnings = []

        if config.environment == 'production' and config.sync.api_base_url.startswith("http://"):
            warnings.append("Remote API is not using HTTPS in production")

        if config.sync.batch_size > 100:
            warnings.append(f"Very large batch_size: {config.sync.batch_size}")

        if config.sync.connectivity_timeout > config.sync.request_timeout:
            warnings.append("Connectivity timeout is longer than the batch request timeout")

        if not config.database_url and not os.getenv('TASKSYNC_DATABASE_URL'):
            warnings.append("No database URL configured")

        if warnings:
            self.logger.warning("Configuration validation warnings", warnings=warnings)
        else:
            self.logger.info("Configuration validation passed")

        return warnings


def load_config_from_env() -> ClientConfig:
    """Load configuration from environment variables and default files.

    Looks for configuration files in this order:
    1. TASKSYNC_CONFIG_FILE environment variable
    2. ./config/tasksync.yaml
    3. ./config/tasksync.json
    4. ./tasksync.yaml
    5. ./tasksync.json

    If no file is found, returns a default configuration.
    """
    loader = ConfigLoader()
    logger = get_logger("load_config_from_env")

    config_file = os.getenv('TASKSYNC_CONFIG_FILE')
    if config_file:
        if os.path.exists(config_file):
            return loader.load_from_file(config_file)
        logger.warning("Specified config file not found", file=config_file)

    possible_files = [
        './config/tasksync.yaml',
        './config/tasksync.yml',
        './config/tasksync.json',
        './tasksync.yaml',
        './tasksync.yml',
        './tasksync.json'
    ]

    for file_path in possible_files:
        if os.path.exists(file_path):
            logger.info("Found configuration file", file=file_path)
            return loader.load_from_file(file_path)

    logger.info("No configuration file found, using default configuration")
    return loader.load_from_dict({})
