"""
Database logging configuration.

This module sets up persistence-specific logging that respects the log level
configured in the server configuration while providing detailed statement
tracking at DEBUG level.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from ..logging_utils import setup_table_logging


class SafeFormatter(logging.Formatter):
    """Formatter that provides default values for missing fields."""

    def format(self, record):
        if not hasattr(record, 'database_context'):
            record.database_context = 'db'
        if not hasattr(record, 'table_name'):
            record.table_name = '-'
        return super().format(record)


def setup_db_logging(main_config: Dict[str, Any]) -> logging.Logger:
    """
    Setup database logging based on main configuration.

    The logging level comes from the ``logging`` section of the server
    configuration; handlers and formatting for the ``db`` logger are set here.

    Args:
        main_config: Server configuration dictionary

    Returns:
        Configured logger for database operations
    """
    logging_config = main_config.get('logging', {})
    log_level = str(logging_config.get('level', 'INFO')).upper()
    log_dir = Path(logging_config.get('log_dir', 'logs'))

    logger = logging.getLogger('db')
    logger.setLevel(getattr(logging, log_level))

    # Remove any existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    if logging_config.get('db_log_file', True):
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / 'db.log')
        file_handler.setFormatter(SafeFormatter(
            '%(asctime)s.%(msecs)03d - [%(database_context)s] - [%(table_name)s] - '
            '%(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        file_handler.setLevel(getattr(logging, log_level))
        logger.addHandler(file_handler)

    if log_level == 'DEBUG':
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - DB - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        ))
        console_handler.setLevel(logging.INFO)
        logger.addHandler(console_handler)

    setup_table_logging(logger)

    # Prevent propagation to root logger to avoid duplicate messages
    logger.propagate = not logger.handlers

    return logger


def log_query(logger: logging.Logger, query: str, params: Optional[Sequence[Any]] = None,
              duration: Optional[float] = None, level: str = 'DEBUG') -> None:
    """
    Log a statement with appropriate detail level.

    Args:
        logger: Database logger instance
        query: SQL statement text
        params: Bound parameter values
        duration: Execution time in seconds
        level: Log level ('DEBUG', 'INFO', 'WARNING', 'ERROR')
    """
    log_level = getattr(logging, level.upper())

    if logger.isEnabledFor(logging.DEBUG):
        message = f"Statement: {query}"
        if params:
            message += f" | params={tuple(params)}"
        if duration is not None:
            message += f" | {duration:.3f}s"
        logger.log(log_level, message)
    elif logger.isEnabledFor(log_level) and level.upper() in ('INFO', 'WARNING', 'ERROR'):
        if duration is not None:
            logger.log(log_level, f"Statement executed in {duration:.3f}s")
        else:
            logger.log(log_level, "Database operation completed")


def log_slow_statement(logger: logging.Logger, query: str, duration: float,
                       threshold: float) -> None:
    """Warn about a statement that ran longer than the threshold."""
    if duration > threshold:
        logger.warning(f"Slow statement detected: {duration:.3f}s > {threshold}s: {query}")


class DatabaseLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds database-specific context to log messages.

    Adds ``database_context`` (database name derived from its path) and
    ``table_name`` when the adapter was created for a specific table.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg, kwargs):
        """Add database context to log records."""
        db_path = self.extra.get('db_path', 'unknown')
        if db_path not in ('unknown', ':memory:'):
            db_name = Path(str(db_path)).stem
        else:
            db_name = db_path

        if 'extra' not in kwargs:
            kwargs['extra'] = {}
        kwargs['extra'].setdefault('database_context', db_name)
        if 'table_name' in self.extra:
            kwargs['extra'].setdefault('table_name', self.extra['table_name'])

        return msg, kwargs

    def connection_event(self, event: str, details: Optional[str] = None) -> None:
        """Log a connection pool event."""
        if self.logger.isEnabledFor(logging.DEBUG):
            message = f"Connection {event}"
            if details:
                message += f": {details}"
            self.debug(message)
        elif event == 'error':
            self.error(f"Connection error: {details}")
