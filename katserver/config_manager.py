"""Server Configuration Management for KatServer.

This module provides:
- YAML config loading with override support
- Environment variable overrides for database settings and credentials
- Configuration schema validation
- Secrets redaction
"""

import os
import logging
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from jsonschema import ValidationError, validate

from .security import setup_secure_logging

logger = setup_secure_logging(__name__)


# Configuration schema for validation
CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["database"],
    "properties": {
        "server": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "extensions_dir": {"type": "string"}
            }
        },
        "database": {
            "type": "object",
            "required": ["type"],
            "properties": {
                "type": {"type": "string", "enum": ["sqlite", "postgresql"]},
                "url": {"type": "string"},
                "username": {"type": "string"},
                "password": {"type": "string"},
                "persistence": {
                    "type": "object",
                    "properties": {
                        "connection": {
                            "type": "object",
                            "properties": {
                                "busy_timeout_ms": {"type": "integer", "minimum": 0},
                                "pool_size": {"type": "integer", "minimum": 1},
                                "pool_timeout": {"type": "number", "exclusiveMinimum": 0}
                            }
                        },
                        "operation": {
                            "type": "object",
                            "properties": {
                                "default_timeout": {"type": ["number", "null"], "exclusiveMinimum": 0},
                                "slow_statement_threshold": {"type": "number", "exclusiveMinimum": 0}
                            }
                        },
                        "sqlite": {
                            "type": "object",
                            "properties": {
                                "foreign_keys": {"type": "boolean"},
                                "journal_mode": {"type": "string"}
                            }
                        }
                    }
                }
            }
        },
        "logging": {
            "type": "object",
            "properties": {
                "level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR"]},
                "log_dir": {"type": "string"},
                "log_file": {"type": "string"},
                "max_log_size_mb": {"type": "number", "minimum": 1},
                "backup_count": {"type": "integer", "minimum": 0},
                "console": {"type": "boolean"},
                "db_log_file": {"type": "boolean"}
            }
        }
    }
}

DEFAULT_CONFIG = {
    "database": {
        "type": "sqlite",
        "url": "data/katserver.db",
    },
    "logging": {
        "level": "INFO",
        "log_dir": "logs",
    },
}


class ServerConfigManager:
    """Loads, merges and validates the server configuration."""

    # Environment variable mappings for database settings and credentials
    ENV_MAPPINGS = {
        'database.type': 'KATSERVER_DATABASE_TYPE',
        'database.url': 'KATSERVER_DATABASE_URL',
        'database.username': 'KATSERVER_DATABASE_USERNAME',
        'database.password': 'KATSERVER_DATABASE_PASSWORD',
    }

    def __init__(self, base_config_path: Optional[Union[str, Path]] = None):
        """Initialize config manager with base configuration file.

        Args:
            base_config_path: Path to base configuration YAML file; built-in
                defaults are used when None
        """
        if base_config_path is None:
            self.base_config_path = None
            self.base_config = deepcopy(DEFAULT_CONFIG)
        else:
            self.base_config_path = Path(base_config_path)
            if not self.base_config_path.exists():
                raise FileNotFoundError(f"Base config not found: {base_config_path}")
            self.base_config = self._load_yaml_file(self.base_config_path)

        self.merged_config = deepcopy(self.base_config)
        self._apply_env_overrides()

    def _load_yaml_file(self, path: Path) -> Dict[str, Any]:
        """Safely load YAML file.

        Args:
            path: Path to YAML file

        Returns:
            Loaded configuration dictionary
        """
        try:
            with open(path, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML file {path}: {e}")
            raise

        if not isinstance(config, dict):
            raise ValueError(f"Config file must contain a dictionary, got {type(config)}")

        return config

    def merge_override(self, override_path: Union[str, Path]) -> None:
        """Merge override configuration file.

        Args:
            override_path: Path to override configuration file
        """
        override_path = Path(override_path)
        if not override_path.exists():
            raise FileNotFoundError(f"Override config not found: {override_path}")

        override_config = self._load_yaml_file(override_path)
        self.merged_config = self._deep_merge(self.merged_config, override_config)
        self._apply_env_overrides()

        logger.info(f"Merged override config from: {override_path}")

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries.

        Args:
            base: Base dictionary
            override: Override dictionary

        Returns:
            Merged dictionary
        """
        result = deepcopy(base)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = deepcopy(value)

        return result

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        for config_path, env_var in self.ENV_MAPPINGS.items():
            env_value = os.environ.get(env_var)
            if env_value:
                self._set_nested_value(self.merged_config, config_path, env_value)
                logger.info(f"Applied environment override for {config_path}")

    def _set_nested_value(self, config: Dict[str, Any], path: str, value: Any) -> None:
        keys = path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _get_nested_value(self, config: Dict[str, Any], path: str,
                          default: Any = None) -> Any:
        keys = path.split('.')
        current = config

        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return current

    def validate(self, schema: Optional[Dict[str, Any]] = None) -> None:
        """Validate configuration against schema.

        Args:
            schema: JSON schema to validate against (uses default if None)

        Raises:
            ValidationError: If configuration is invalid
        """
        schema = schema or CONFIG_SCHEMA

        try:
            validate(self.merged_config, schema)
            logger.info("Configuration validation successful")
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e.message}")
            logger.error(f"Failed at path: {'.'.join(str(p) for p in e.path)}")
            raise

    def get(self, path: str, default: Any = None) -> Any:
        """Get a configuration value using dot notation.

        Args:
            path: Dot-separated path (e.g., 'database.type')
            default: Default value if path not found

        Returns:
            Configuration value or default
        """
        return self._get_nested_value(self.merged_config, path, default)

    def get_config(self, redact_secrets: bool = True) -> Dict[str, Any]:
        """Get the merged configuration.

        Args:
            redact_secrets: Whether to redact sensitive values

        Returns:
            Configuration dictionary
        """
        if redact_secrets:
            return self._redact_secrets(deepcopy(self.merged_config))
        return deepcopy(self.merged_config)

    def _redact_secrets(self, config: Dict[str, Any]) -> Dict[str, Any]:
        sensitive_keys = ['password', 'secret', 'token', 'credential', 'private_key']

        def redact_dict(d: Dict[str, Any]) -> Dict[str, Any]:
            for key, value in d.items():
                key_lower = key.lower()
                if any(sensitive in key_lower for sensitive in sensitive_keys):
                    d[key] = '***REDACTED***'
                elif isinstance(value, dict):
                    d[key] = redact_dict(value)
                elif isinstance(value, list):
                    d[key] = [
                        redact_dict(item) if isinstance(item, dict) else item
                        for item in value
                    ]
            return d

        return redact_dict(config)

    def get_missing_credentials(self) -> List[str]:
        """Environment variables a server database needs but nobody provided.

        Returns:
            List of environment variable names
        """
        if self.get('database.type') == 'sqlite':
            return []

        missing = []
        for config_path in ('database.username', 'database.password'):
            if self.get(config_path) is None:
                missing.append(self.ENV_MAPPINGS[config_path])
        return missing


def load_server_config(base_path: Optional[Union[str, Path]] = None,
                       override_path: Optional[Union[str, Path]] = None,
                       validate_schema: bool = True) -> Dict[str, Any]:
    """Convenience function to load the server configuration.

    Args:
        base_path: Path to base configuration file, defaults when None
        override_path: Optional path to override configuration
        validate_schema: Whether to validate against schema and require
            credentials for server databases

    Returns:
        Merged and validated configuration

    Raises:
        ValueError: If a server database has no username or password
    """
    manager = ServerConfigManager(base_path)

    if override_path:
        manager.merge_override(override_path)

    if validate_schema:
        manager.validate()
        missing = manager.get_missing_credentials()
        if missing:
            raise ValueError(f"Missing database credentials, set: {', '.join(missing)}")

    return manager.get_config(redact_secrets=False)
