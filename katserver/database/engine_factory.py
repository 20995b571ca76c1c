"""
Database engine factory for creating database managers with store-specific setup
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import event
from sqlalchemy.engine import Engine

from .base_manager import DatabaseManager
from .config import DatabaseConfig, get_persistence_config, is_memory_database, validate_config

logger = logging.getLogger('db.factory')


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


class DatabaseFactory:
    """Factory for creating database managers with store-specific setup"""

    @staticmethod
    def create_manager(db_type: str, connection_params: Dict[str, Any],
                       persistence_config: Dict[str, Any] = None) -> DatabaseManager:
        """
        Create database manager for a database type

        Args:
            db_type: Database type ('sqlite', 'postgresql')
            connection_params: Database connection parameters
            persistence_config: Overrides merged into PERSISTENCE_CONFIG

        Returns:
            DatabaseManager instance, not yet opened

        Raises:
            ValueError: If the type is unsupported or the settings are invalid
        """
        if db_type not in DatabaseConfig.SUPPORTED_TYPES:
            raise ValueError(f"Unsupported database type: {db_type}")

        settings = _deep_merge(get_persistence_config(), persistence_config or {})
        validate_config(settings)

        engine = DatabaseConfig.get_engine(db_type, connection_params)

        if db_type == 'sqlite':
            DatabaseFactory._setup_sqlite(engine, connection_params, settings)

        manager = DatabaseManager(engine, db_type=db_type, persistence_config=settings)

        logger.info(f"Created {db_type} database manager")
        return manager

    @staticmethod
    def _setup_sqlite(engine: Engine, connection_params: Dict[str, Any],
                      settings: Dict[str, Any]) -> None:
        """Apply SQLite pragmas to every new DB-API connection"""
        sqlite_settings = settings.get('sqlite', {})
        busy_timeout = int(settings['connection']['busy_timeout_ms'])
        foreign_keys = bool(sqlite_settings.get('foreign_keys', True))
        journal_mode = None
        if not is_memory_database(connection_params.get('database', ':memory:')):
            journal_mode = str(sqlite_settings.get('journal_mode', 'WAL')).upper()

        @event.listens_for(engine, 'connect')
        def set_sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            try:
                cursor.execute(f"PRAGMA busy_timeout = {busy_timeout}")
                cursor.execute(f"PRAGMA foreign_keys = {'ON' if foreign_keys else 'OFF'}")
                if journal_mode:
                    cursor.execute(f"PRAGMA journal_mode = {journal_mode}")
            finally:
                cursor.close()

        logger.debug(f"Configured SQLite pragmas: busy_timeout={busy_timeout}, "
                     f"foreign_keys={foreign_keys}, journal_mode={journal_mode or 'default'}")

    @staticmethod
    def create_from_config(config: Dict[str, Any]) -> DatabaseManager:
        """
        Create database manager from configuration dictionary

        Args:
            config: Configuration with 'db_type' and 'connection_params' keys
                and an optional 'persistence' section

        Returns:
            DatabaseManager instance
        """
        db_type = config.get('db_type')
        connection_params = config.get('connection_params', {})

        if not db_type:
            raise ValueError("Configuration must include 'db_type'")

        return DatabaseFactory.create_manager(db_type, connection_params,
                                              config.get('persistence'))

    @staticmethod
    def get_supported_databases() -> List[str]:
        """
        Get list of supported database types

        Returns:
            List of supported database type strings
        """
        return list(DatabaseConfig.SUPPORTED_TYPES)
