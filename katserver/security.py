"""Security utilities for KatServer.

This module provides:
- Configuration value validation
- Log sanitization for credentials and connection strings
"""

import logging
import re
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


class InputValidator:
    """Validates and sanitizes configuration inputs and log text."""

    @staticmethod
    def validate_config_value(key: str, value: Any,
                              expected_type: type = None,
                              allowed_values: List[Any] = None) -> Any:
        """Validate a configuration value.

        Args:
            key: Configuration key name
            value: Value to validate
            expected_type: Expected type (optional)
            allowed_values: List of allowed values (optional)

        Returns:
            Validated value

        Raises:
            ValueError: If validation fails
        """
        if expected_type and not isinstance(value, expected_type):
            raise ValueError(
                f"Config key '{key}' expected type {expected_type.__name__}, "
                f"got {type(value).__name__}"
            )

        if allowed_values and value not in allowed_values:
            raise ValueError(
                f"Config key '{key}' value '{value}' not in allowed values: {allowed_values}"
            )

        return value

    @staticmethod
    def sanitize_log_message(message: str) -> str:
        """Remove sensitive data from log messages.

        Args:
            message: Log message to sanitize

        Returns:
            Sanitized message
        """
        # Passwords embedded in connection URLs
        message = re.sub(r'(://[^:/\s@]+):[^@\s]+@', r'\1:***@', message)

        message = re.sub(
            r'(password|passwd|token|secret)\s*[=:]\s*[^\s,]+',
            r'\1=***REDACTED***',
            message,
            flags=re.IGNORECASE
        )

        # Remove file paths that might expose system structure
        message = re.sub(r'/home/[^/\s]+/', '/home/***/', message)

        return message


class SensitiveDataFilter(logging.Filter):
    """Logging filter that removes sensitive data."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log record to remove sensitive data.

        Args:
            record: Log record to filter

        Returns:
            True (always allow record through after sanitization)
        """
        if isinstance(record.msg, str):
            record.msg = InputValidator.sanitize_log_message(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {key: _sanitize_arg(arg) for key, arg in record.args.items()}
            else:
                record.args = tuple(_sanitize_arg(arg) for arg in record.args)
        return True


def _sanitize_arg(arg: Any) -> Any:
    return InputValidator.sanitize_log_message(arg) if isinstance(arg, str) else arg


def setup_secure_logging(logger_name: Optional[str] = None) -> logging.Logger:
    """Set up logger with security filters.

    Args:
        logger_name: Name of logger (None for root logger)

    Returns:
        Configured logger
    """
    logger = logging.getLogger(logger_name)

    sensitive_filter = SensitiveDataFilter()

    for handler in logger.handlers:
        if not any(isinstance(f, SensitiveDataFilter) for f in handler.filters):
            handler.addFilter(sensitive_filter)

    if not any(isinstance(f, SensitiveDataFilter) for f in logger.filters):
        logger.addFilter(sensitive_filter)

    return logger
