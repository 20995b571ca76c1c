"""
Database configuration and engine management
"""

import copy
import logging
from typing import Any, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from ..security import InputValidator

logger = logging.getLogger('db.config')

JOURNAL_MODES = ('DELETE', 'TRUNCATE', 'PERSIST', 'MEMORY', 'WAL', 'OFF')

# Persistence layer settings that are independent of the backing store
PERSISTENCE_CONFIG = {
    'connection': {
        'busy_timeout_ms': 5000,           # SQLite busy handler timeout
        'pool_size': 5,                    # Pooled connections for server databases
        'pool_timeout': 30,                # Seconds to wait for a pooled connection
    },
    'operation': {
        'default_timeout': None,           # Seconds per CRUD call, None for unbounded
        'slow_statement_threshold': 1.0,   # Warn about statements slower than this (seconds)
    },
    'sqlite': {
        'foreign_keys': True,              # PRAGMA foreign_keys
        'journal_mode': 'WAL',             # Journal mode for file databases
    },
}


def get_persistence_config() -> Dict[str, Any]:
    """Get a copy of the persistence configuration dictionary."""
    return copy.deepcopy(PERSISTENCE_CONFIG)


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate persistence configuration parameters.

    Args:
        config: Dictionary shaped like PERSISTENCE_CONFIG

    Returns:
        True if valid

    Raises:
        ValueError: On the first invalid setting
    """
    conn_config = config.get('connection', {})
    if conn_config.get('busy_timeout_ms', 0) < 0:
        raise ValueError("busy_timeout_ms must not be negative")
    if conn_config.get('pool_size', 1) <= 0:
        raise ValueError("pool_size must be positive")
    if conn_config.get('pool_timeout', 1) <= 0:
        raise ValueError("pool_timeout must be positive")

    op_config = config.get('operation', {})
    default_timeout = op_config.get('default_timeout')
    if default_timeout is not None and default_timeout <= 0:
        raise ValueError("default_timeout must be positive or None")
    if op_config.get('slow_statement_threshold', 1.0) <= 0:
        raise ValueError("slow_statement_threshold must be positive")

    sqlite_config = config.get('sqlite', {})
    InputValidator.validate_config_value('foreign_keys', sqlite_config.get('foreign_keys', True),
                                         expected_type=bool)
    InputValidator.validate_config_value(
        'journal_mode', str(sqlite_config.get('journal_mode', 'WAL')).upper(),
        allowed_values=list(JOURNAL_MODES)
    )

    return True


def is_memory_database(database: Optional[str]) -> bool:
    """Whether a SQLite database path names an in-memory database."""
    return not database or database == ':memory:' or str(database).startswith('file::memory:')


class DatabaseConfig:
    """Configuration manager for database connections"""

    SUPPORTED_TYPES = ('sqlite', 'postgresql')

    @staticmethod
    def get_engine(db_type: str, connection_params: Dict[str, Any]) -> Engine:
        """
        Create SQLAlchemy engine based on database type and parameters

        Args:
            db_type: Database type ('sqlite', 'postgresql')
            connection_params: Database connection parameters

        Returns:
            SQLAlchemy Engine instance
        """
        # Never mutate the caller's dictionary
        engine_args = dict(connection_params.get('engine_args', {}))

        if db_type == 'sqlite':
            database = connection_params.get('database', ':memory:')
            conn_string = f"sqlite:///{database}"
            connect_args = dict(engine_args.pop('connect_args', {}))
            connect_args.setdefault('check_same_thread', False)
            engine_args['connect_args'] = connect_args
            if is_memory_database(database):
                # One shared connection, otherwise every lease sees an empty database
                engine_args.setdefault('poolclass', StaticPool)
            else:
                engine_args.setdefault('pool_pre_ping', True)
        elif db_type == 'postgresql':
            user = connection_params.get('user', 'postgres')
            password = connection_params.get('password', '')
            host = connection_params.get('host', 'localhost')
            port = connection_params.get('port', 5432)
            database = connection_params.get('database', 'postgres')
            conn_string = f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{database}"
            engine_args.setdefault('pool_size', 10)
            engine_args.setdefault('max_overflow', 20)
            engine_args.setdefault('pool_pre_ping', True)
        else:
            raise ValueError(f"Unsupported database type: {db_type}")

        engine_args.setdefault('echo', False)

        logger.info(f"Creating {db_type} engine: {DatabaseConfig.redact_url(conn_string)}")
        return create_engine(conn_string, **engine_args)

    @staticmethod
    def redact_url(conn_string: str) -> str:
        """Hide the password part of a connection string."""
        scheme, sep, rest = conn_string.partition('://')
        if '@' not in rest:
            return conn_string
        credentials, _, location = rest.rpartition('@')
        user = credentials.split(':', 1)[0]
        return f"{scheme}{sep}{user}:***@{location}"

    @staticmethod
    def get_default_config(db_type: str, database_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Get default configuration for a database type

        Args:
            db_type: Database type
            database_path: Optional database file path

        Returns:
            Default configuration dictionary
        """
        if db_type == 'sqlite':
            return {
                'db_type': 'sqlite',
                'connection_params': {
                    'database': database_path or ':memory:',
                    'engine_args': {
                        'echo': False
                    }
                }
            }
        elif db_type == 'postgresql':
            return {
                'db_type': 'postgresql',
                'connection_params': {
                    'user': 'postgres',
                    'password': '',
                    'host': 'localhost',
                    'port': 5432,
                    'database': database_path or 'postgres',
                    'engine_args': {
                        'pool_size': 10,
                        'max_overflow': 20,
                        'pool_pre_ping': True,
                        'echo': False
                    }
                }
            }
        else:
            raise ValueError(f"Unsupported database type: {db_type}")

    @staticmethod
    def from_server_config(server_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Translate the ``database`` section of the server configuration

        ``database.url`` is a file path for SQLite and ``host[:port]/name``
        for server databases.

        Args:
            server_config: Full server configuration dictionary

        Returns:
            Factory configuration with 'db_type' and 'connection_params' keys
        """
        db_section = server_config.get('database', {})
        db_type = db_section.get('type', 'sqlite')
        url = db_section.get('url') or None

        if db_type == 'sqlite':
            config = DatabaseConfig.get_default_config('sqlite', url)
        else:
            config = DatabaseConfig.get_default_config(db_type)
            params = config['connection_params']
            if url:
                location, _, database = url.partition('/')
                host, _, port = location.partition(':')
                params['host'] = host or params['host']
                if port:
                    params['port'] = int(port)
                if database:
                    params['database'] = database
            if db_section.get('username'):
                params['user'] = db_section['username']
            if db_section.get('password'):
                params['password'] = db_section['password']

        persistence = db_section.get('persistence')
        if persistence:
            config['persistence'] = persistence
        return config
