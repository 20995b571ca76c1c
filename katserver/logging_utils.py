"""
Logging utilities for KatServer.

Provides table-aware logging using Python's contextvars so every log line
emitted while a persistence operation runs carries the table (message group)
it works on, across threads.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

# Thread-safe context variable for storing the current table name
_table_context: ContextVar[Optional[str]] = ContextVar('table_name', default=None)


class TableContextFilter(logging.Filter):
    """
    Logging filter that adds the current table name to log records.

    Records that already carry ``table_name`` (set through ``extra``) keep it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Add table_name to the log record."""
        if not hasattr(record, 'table_name'):
            table_name = _table_context.get()
            record.table_name = table_name if table_name else '-'
        return True


def set_table_context(table_name: Optional[str]):
    """
    Set the current table name in the logging context.

    Args:
        table_name: Table name used for subsequent log messages

    Returns:
        Token to pass to ``reset_table_context``
    """
    return _table_context.set(table_name)


def reset_table_context(token) -> None:
    """Restore the table context that was active before ``set_table_context``."""
    _table_context.reset(token)


def get_table_context() -> Optional[str]:
    """
    Get the current table name from the logging context.

    Returns:
        The current table name or None if not set
    """
    return _table_context.get()


@contextmanager
def table_context(table_name: str) -> Iterator[None]:
    """Scope the logging table context to a block."""
    token = set_table_context(table_name)
    try:
        yield
    finally:
        reset_table_context(token)


def setup_table_logging(root_logger: Optional[logging.Logger] = None) -> None:
    """
    Add TableContextFilter to all handlers of the specified logger.

    Args:
        root_logger: Logger to configure. If None, uses the root logger.
    """
    if root_logger is None:
        root_logger = logging.getLogger()

    table_filter = TableContextFilter()

    for handler in root_logger.handlers:
        if not any(isinstance(f, TableContextFilter) for f in handler.filters):
            handler.addFilter(table_filter)

    # Also add to any child loggers that have handlers
    for name in list(logging.root.manager.loggerDict):
        logger = logging.getLogger(name)
        for handler in logger.handlers:
            if not any(isinstance(f, TableContextFilter) for f in handler.filters):
                handler.addFilter(table_filter)


def setup_main_logging(config: Dict[str, Any]) -> logging.Logger:
    """
    Setup main server logging to <log_dir>/katserver.log and the console.

    This is separate from database logging which goes to <log_dir>/db.log.

    Args:
        config: Server configuration dictionary with a ``logging`` section

    Returns:
        Configured root logger
    """
    from pathlib import Path
    from logging.handlers import RotatingFileHandler

    log_config = config.get('logging', {})
    log_dir = Path(log_config.get('log_dir', 'logs'))
    log_dir.mkdir(parents=True, exist_ok=True)

    log_format = '%(asctime)s - [%(table_name)s] - %(name)s - %(levelname)s - %(message)s'

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(log_config.get('level', 'INFO')).upper()))

    # Remove any existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    file_handler = RotatingFileHandler(
        log_dir / log_config.get('log_file', 'katserver.log'),
        maxBytes=int(log_config.get('max_log_size_mb', 10)) * 1024 * 1024,
        backupCount=int(log_config.get('backup_count', 5))
    )
    file_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(file_handler)

    if log_config.get('console', True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s', datefmt='%H:%M:%S'
        ))
        root_logger.addHandler(console_handler)

    # Reduce verbosity of some libraries
    logging.getLogger('sqlalchemy').setLevel(logging.WARNING)

    setup_table_logging()

    logger = logging.getLogger(__name__)
    logger.info("Main server logging configuration initialized")

    return root_logger
