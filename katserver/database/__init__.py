"""
Persistence layer for KatServer.

Maps pydantic records onto relational tables without pre-declared schemas.

Key components:
- Record descriptors and lazy table creation from a record's shape
- Statement cache keyed by table, operation and filter column
- CRUD executor returning explicit success/failure results
- Connection provider built on SQLAlchemy engines
- Centralized logging configuration
"""

from .base_manager import DatabaseManager
from .config import DatabaseConfig, PERSISTENCE_CONFIG, get_persistence_config, validate_config
from .deadline import Deadline
from .engine_factory import DatabaseFactory
from .errors import (
    ConnectivityError,
    DeadlineExceededError,
    ErrorKind,
    ExecutionError,
    InvalidIdentifierError,
    MappingError,
    PersistenceError,
    SchemaError,
    StatementCompileError,
    UnsupportedTypeError,
    classify_exception,
)
from .executor import CrudExecutor, ExecutorStats, Predicate
from .logging_config import DatabaseLoggerAdapter, setup_db_logging
from .results import OperationResult
from .schema import Column, RecordDescriptor, RecordRegistry, SchemaBuilder, describe
from .statements import CachedStatement, OperationKind, StatementCache, StatementKey
from .utils import ColumnType, IdentifierValidator, TypeMapper, to_column_name

__all__ = [
    # Core components
    "CrudExecutor",
    "ExecutorStats",
    "Predicate",
    "OperationResult",
    "Deadline",

    # Schema
    "Column",
    "ColumnType",
    "RecordDescriptor",
    "RecordRegistry",
    "SchemaBuilder",
    "TypeMapper",
    "describe",
    "to_column_name",

    # Statements
    "CachedStatement",
    "OperationKind",
    "StatementCache",
    "StatementKey",

    # Connection
    "DatabaseConfig",
    "DatabaseFactory",
    "DatabaseManager",
    "IdentifierValidator",
    "PERSISTENCE_CONFIG",
    "get_persistence_config",
    "validate_config",

    # Logging
    "DatabaseLoggerAdapter",
    "setup_db_logging",

    # Errors
    "ErrorKind",
    "PersistenceError",
    "ConnectivityError",
    "SchemaError",
    "UnsupportedTypeError",
    "StatementCompileError",
    "InvalidIdentifierError",
    "ExecutionError",
    "MappingError",
    "DeadlineExceededError",
    "classify_exception",
]
