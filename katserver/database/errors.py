"""
Error taxonomy for the persistence layer.

Every failure raised by the CRUD pipeline is a PersistenceError carrying an
ErrorKind, so callers can branch on the kind instead of parsing messages:
- CONNECTIVITY: store unreachable or connection lost (retryable)
- SCHEMA: table DDL failed or a record type cannot be mapped to columns
- STATEMENT_COMPILE: generated statement text is malformed or unusable
- EXECUTION: constraint violation or type mismatch at bind time
- MAPPING: result rows and record fields disagree
- DEADLINE: the caller's timeout passed before the store answered
"""

from enum import Enum
from typing import Optional

from sqlalchemy import exc as sa_exc


class ErrorKind(str, Enum):
    """Failure categories reported by persistence operations."""
    CONNECTIVITY = "connectivity"
    SCHEMA = "schema"
    STATEMENT_COMPILE = "statement_compile"
    EXECUTION = "execution"
    MAPPING = "mapping"
    DEADLINE = "deadline"


class PersistenceError(Exception):
    """Base exception for persistence layer errors."""

    kind: ErrorKind = ErrorKind.EXECUTION

    def __init__(self, message: str, table: Optional[str] = None,
                 statement: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.statement = statement

    @property
    def retryable(self) -> bool:
        """Whether repeating the same call may succeed."""
        return self.kind in (ErrorKind.CONNECTIVITY, ErrorKind.DEADLINE)


class ConnectivityError(PersistenceError):
    """Raised when the backing store cannot be reached."""
    kind = ErrorKind.CONNECTIVITY


class SchemaError(PersistenceError):
    """Raised when table creation or schema inference fails."""
    kind = ErrorKind.SCHEMA


class UnsupportedTypeError(SchemaError):
    """Raised when a record field type has no column type."""
    pass


class StatementCompileError(PersistenceError):
    """Raised when a statement cannot be generated or prepared."""
    kind = ErrorKind.STATEMENT_COMPILE


class InvalidIdentifierError(StatementCompileError):
    """Raised when a table or column name is not a safe identifier."""
    pass


class ExecutionError(PersistenceError):
    """Raised when the store rejects a bound statement."""
    kind = ErrorKind.EXECUTION


class MappingError(PersistenceError):
    """Raised when a result row cannot be mapped back onto a record."""
    kind = ErrorKind.MAPPING


class DeadlineExceededError(PersistenceError):
    """Raised when an operation runs past its deadline."""
    kind = ErrorKind.DEADLINE


# Substrings of driver messages, checked in order
_MESSAGE_HINTS = (
    ('unable to open database', ConnectivityError),
    ('database is locked', ConnectivityError),
    ('disk i/o error', ConnectivityError),
    ('could not connect', ConnectivityError),
    ('connection refused', ConnectivityError),
    ('server closed the connection', ConnectivityError),
    ('interrupted', DeadlineExceededError),
    ('syntax error', StatementCompileError),
    ('no such column', StatementCompileError),
    ('values for', StatementCompileError),
    ('no such table', SchemaError),
    ('already exists', SchemaError),
)


def classify_exception(error: BaseException, table: Optional[str] = None,
                       statement: Optional[str] = None) -> PersistenceError:
    """
    Translate a driver or SQLAlchemy exception into a PersistenceError.

    Args:
        error: Exception raised while talking to the store
        table: Table the operation targeted
        statement: Statement text being executed, if any

    Returns:
        PersistenceError subclass instance with the original chained as cause
    """
    if isinstance(error, PersistenceError):
        return error

    message = str(getattr(error, 'orig', None) or error)
    lowered = message.lower()

    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        error_class = ConnectivityError
    elif isinstance(error, sa_exc.IntegrityError):
        error_class = ExecutionError
    elif isinstance(error, (sa_exc.InterfaceError, sa_exc.DisconnectionError)):
        error_class = ConnectivityError
    elif isinstance(error, sa_exc.TimeoutError):
        error_class = ConnectivityError
    else:
        error_class = ExecutionError
        for hint, hinted_class in _MESSAGE_HINTS:
            if hint in lowered:
                error_class = hinted_class
                break
        else:
            if isinstance(error, sa_exc.ProgrammingError):
                error_class = StatementCompileError

    translated = error_class(message, table=table, statement=statement)
    translated.__cause__ = error
    return translated
