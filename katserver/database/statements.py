"""
Statement cache for generated CRUD statements.

Statements are generated from a table name and a record descriptor, compiled
once per key for the executor's lifetime and reused afterwards. Keys are
``(table, CREATE)`` or ``(table, kind, filter column)``; the filter column is
part of the statement text and only the filter value is bound.

Statement text is generated with ``?`` placeholders and rendered for the
driver's paramstyle when the entry is compiled.
"""

import logging
import threading
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Set, Tuple, Union

from sqlalchemy.engine import Connection, CursorResult, Dialect

from .deadline import Deadline
from .errors import StatementCompileError
from .schema.descriptor import RecordDescriptor
from .utils.identifiers import IdentifierValidator

logger = logging.getLogger('db.statements')


class OperationKind(str, Enum):
    """CRUD operation a statement implements."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class StatementKey(NamedTuple):
    """Cache key of a compiled statement."""
    table: str
    kind: OperationKind
    filter_column: Optional[str] = None

    def __str__(self) -> str:
        if self.filter_column is None:
            return f"{self.table}:{self.kind.value}"
        return f"{self.table}:{self.kind.value}:{self.filter_column}"


def render_placeholders(statement: str, paramstyle: str) -> str:
    """
    Rewrite ``?`` placeholders for a DB-API paramstyle.

    Identifiers never contain ``?`` (they are validated), so every ``?`` in
    generated text is a placeholder.

    Args:
        statement: Statement text using ``?`` placeholders
        paramstyle: DB-API paramstyle of the driver

    Returns:
        Statement text the driver accepts
    """
    if paramstyle == 'qmark':
        return statement
    if paramstyle in ('format', 'pyformat'):
        return statement.replace('?', '%s')

    parts = statement.split('?')
    rendered = [parts[0]]
    for position, part in enumerate(parts[1:], start=1):
        if paramstyle == 'numeric':
            rendered.append(f":{position}")
        elif paramstyle == 'numeric_dollar':
            rendered.append(f"${position}")
        elif paramstyle == 'named':
            rendered.append(f":p{position}")
        else:
            raise StatementCompileError(f"Unsupported paramstyle '{paramstyle}'")
        rendered.append(part)
    return ''.join(rendered)


class CachedStatement:
    """
    A compiled statement plus everything needed to bind it.

    The statement lock is held while the statement is bound and executed.
    """

    def __init__(self, key: StatementKey, text: str, driver_sql: str, paramstyle: str,
                 param_count: int, excluded_fields: Sequence[str] = ()):
        self.key = key
        self.text = text
        self.driver_sql = driver_sql
        self.paramstyle = paramstyle
        self.param_count = param_count
        self.excluded_fields: Tuple[str, ...] = tuple(excluded_fields)
        self.lock = threading.Lock()
        self.executions = 0

    def __repr__(self) -> str:
        return f"CachedStatement({self.key}, {self.text!r})"

    @property
    def kind(self) -> OperationKind:
        return self.key.kind

    @property
    def table(self) -> str:
        return self.key.table

    def bind(self, values: Sequence[Any]) -> Union[Tuple[Any, ...], Dict[str, Any]]:
        """
        Arrange positional values the way the driver expects them.

        Raises:
            StatementCompileError: If the value count does not match the placeholders
        """
        if len(values) != self.param_count:
            raise StatementCompileError(
                f"Statement expects {self.param_count} values, got {len(values)}",
                table=self.table, statement=self.text,
            )
        if self.paramstyle == 'named':
            return {f"p{position}": value for position, value in enumerate(values, start=1)}
        return tuple(values)

    def execute(self, conn: Connection, values: Sequence[Any]) -> CursorResult:
        """Bind values and execute on an open connection."""
        parameters = self.bind(values)
        self.executions += 1
        return conn.exec_driver_sql(self.driver_sql, parameters)


class StatementCache:
    """Get-or-build cache of compiled statements guarded by per-table locks"""

    def __init__(self, dialect: Optional[Dialect] = None):
        """
        Initialize statement cache

        Args:
            dialect: Dialect used for quoting and paramstyle; qmark when None
        """
        self.dialect = dialect
        self.paramstyle = getattr(dialect, 'paramstyle', None) or 'qmark'
        self._entries: Dict[StatementKey, CachedStatement] = {}
        self._table_locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._warned_exclusions: Set[Tuple[str, type]] = set()
        self.builds = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: StatementKey) -> bool:
        return key in self._entries

    def table_lock(self, table: str) -> threading.RLock:
        """Lock guarding lazy initialization of one table."""
        lock = self._table_locks.get(table)
        if lock is None:
            with self._locks_guard:
                lock = self._table_locks.setdefault(table, threading.RLock())
        return lock

    def lookup(self, key: StatementKey) -> Optional[CachedStatement]:
        return self._entries.get(key)

    def get_or_build(self, table: str, kind: OperationKind, descriptor: RecordDescriptor,
                     filter_column: Optional[str] = None,
                     deadline: Optional[Deadline] = None) -> CachedStatement:
        """
        Return the cached statement for a key, building it on first use

        Args:
            table: Table name
            kind: Operation kind
            descriptor: Descriptor of the record type the statement serves
            filter_column: Predicate column for READ, UPDATE and DELETE
            deadline: Deadline bounding the wait for the table lock

        Returns:
            Compiled statement

        Raises:
            StatementCompileError: If the statement cannot be generated
            DeadlineExceededError: If the table lock is not acquired in time
        """
        key = self._key(table, kind, filter_column)
        statement = self.lookup(key)
        if statement is not None:
            return statement

        lock = self.table_lock(table)
        (deadline or Deadline()).acquire(lock, f"statement cache lock of {table}", table)
        try:
            statement = self._entries.get(key)
            if statement is None:
                statement = self.build(key, descriptor)
                self._entries[key] = statement
                self.builds += 1
                logger.debug(f"Cached statement {key}: {statement.text}")
        finally:
            lock.release()
        return statement

    def build(self, key: StatementKey, descriptor: RecordDescriptor) -> CachedStatement:
        """
        Generate and compile the statement for a key without caching it

        Args:
            key: Statement key
            descriptor: Descriptor of the record type

        Returns:
            Compiled statement
        """
        table = IdentifierValidator.quote_table_name(key.table, self.dialect)
        excluded: List[str] = []

        if key.kind == OperationKind.CREATE:
            placeholders = ', '.join('?' for _ in descriptor)
            text = f"INSERT INTO {table} VALUES ({placeholders})"
            param_count = len(descriptor)
        elif key.kind == OperationKind.READ:
            text = f"SELECT * FROM {table} WHERE {self._filter(key, descriptor)} = ?"
            param_count = 1
        elif key.kind == OperationKind.DELETE:
            text = f"DELETE FROM {table} WHERE {self._filter(key, descriptor)} = ?"
            param_count = 1
        elif key.kind == OperationKind.UPDATE:
            updatable = descriptor.updatable_fields
            if not updatable:
                raise StatementCompileError(
                    f"{descriptor.record_type.__name__} has no fields with column metadata "
                    f"to update", table=key.table,
                )
            assignments = ', '.join(
                f"{IdentifierValidator.quote_column_name(spec.column_name, self.dialect)} = ?"
                for spec in updatable
            )
            text = f"UPDATE {table} SET {assignments} WHERE {self._filter(key, descriptor)} = ?"
            param_count = len(updatable) + 1
            excluded = [spec.field_name for spec in descriptor.excluded_from_update]
            self._warn_excluded(key.table, descriptor, excluded)
        else:
            raise StatementCompileError(f"Unknown operation kind {key.kind!r}", table=key.table)

        driver_sql = render_placeholders(text, self.paramstyle)
        return CachedStatement(key, text, driver_sql, self.paramstyle, param_count, excluded)

    def discard_table(self, table: str) -> int:
        """
        Drop every cached statement of a table

        Returns:
            Number of entries removed
        """
        with self.table_lock(table):
            keys = [key for key in self._entries if key.table == table]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug(f"Discarded {len(keys)} cached statements of {table}")
        return len(keys)

    def clear(self) -> None:
        with self._locks_guard:
            self._entries.clear()
            self._warned_exclusions.clear()

    @staticmethod
    def _key(table: str, kind: OperationKind, filter_column: Optional[str]) -> StatementKey:
        if kind == OperationKind.CREATE:
            return StatementKey(table, kind)
        if not filter_column:
            raise StatementCompileError(
                f"{kind.value.upper()} statements need a filter column", table=table
            )
        return StatementKey(table, kind, filter_column)

    def _filter(self, key: StatementKey, descriptor: RecordDescriptor) -> str:
        if descriptor.field_for_column(key.filter_column) is None:
            raise StatementCompileError(
                f"Filter column '{key.filter_column}' is not a column of "
                f"{descriptor.record_type.__name__}", table=key.table,
            )
        return IdentifierValidator.quote_column_name(key.filter_column, self.dialect)

    def _warn_excluded(self, table: str, descriptor: RecordDescriptor,
                       excluded: List[str]) -> None:
        if not excluded:
            return
        marker = (table, descriptor.record_type)
        if marker in self._warned_exclusions:
            return
        self._warned_exclusions.add(marker)
        logger.warning(
            f"UPDATE on {table} skips fields without column metadata: {excluded}",
            extra={'table_name': table},
        )
