"""
Explicit success/failure values returned by CRUD operations.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from .errors import ErrorKind, PersistenceError

T = TypeVar('T')


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """
    Outcome of one persistence operation.

    A successful result carries the value (a list of records for reads, the
    affected row count for updates and deletes, None for creates). A failed
    result carries the typed error so callers can tell
    "no rows" apart from "the operation failed".
    """
    ok: bool
    value: Optional[T] = None
    error: Optional[PersistenceError] = None
    executed: bool = True

    @classmethod
    def success(cls, value: Optional[T] = None, executed: bool = True) -> "OperationResult[T]":
        return cls(ok=True, value=value, executed=executed)

    @classmethod
    def failure(cls, error: PersistenceError) -> "OperationResult[T]":
        return cls(ok=False, error=error, executed=False)

    @property
    def kind(self) -> Optional[ErrorKind]:
        """Error kind of a failed result, None on success."""
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> Optional[T]:
        """Return the value or raise the carried error."""
        if not self.ok:
            raise self.error
        return self.value

    def __bool__(self) -> bool:
        return self.ok
