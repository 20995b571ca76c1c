"""
CRUD executor.

Translates create/read/update/delete calls on records into cached statements
and runs each call as its own transaction against a leased connection:

    with CrudExecutor(manager) as executor:
        executor.create('players', Player(id=1, name='a', score=10))
        players = executor.read('players', Player(id=1)).unwrap()

Every operation returns an OperationResult. Store failures are classified,
logged and carried by the result; nothing is swallowed.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, NamedTuple, Optional, Set, Tuple, Type, Union

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from ..logging_utils import table_context
from .base_manager import DatabaseManager
from .deadline import Deadline
from .errors import (ConnectivityError, PersistenceError, SchemaError, StatementCompileError,
                     classify_exception)
from .logging_config import log_query, log_slow_statement
from .results import OperationResult
from .schema.builder import SchemaBuilder
from .schema.descriptor import Column, RecordDescriptor, RecordRegistry
from .statements import CachedStatement, OperationKind, StatementCache
from .utils.identifiers import IdentifierValidator
from .utils.type_mapping import TypeMapper

logger = logging.getLogger('db.executor')


class Predicate(NamedTuple):
    """Single equality predicate ``column = value``."""
    column: str
    value: Any


@dataclass
class ExecutorStats:
    """Counters maintained by an executor."""
    tables_created: int = 0
    statements_executed: int = 0
    noops: int = 0
    failures: int = 0


class CrudExecutor:
    """Executes CRUD operations for records against one database manager"""

    def __init__(self, manager: DatabaseManager, registry: Optional[RecordRegistry] = None,
                 default_timeout: Optional[float] = None):
        """
        Initialize executor

        Args:
            manager: Connection provider
            registry: Record descriptor registry, a private one when None
            default_timeout: Seconds per call when the caller passes none;
                falls back to the manager's persistence settings
        """
        self.manager = manager
        self.registry = registry or RecordRegistry()

        operation_config = manager.persistence_config.get('operation', {})
        self.default_timeout = default_timeout if default_timeout is not None \
            else operation_config.get('default_timeout')
        self.slow_statement_threshold = operation_config.get('slow_statement_threshold', 1.0)

        self.cache = StatementCache(manager.dialect)
        self.schema = SchemaBuilder(manager.dialect)
        self.stats = ExecutorStats()
        self._stats_lock = threading.Lock()
        self._known_tables: Set[str] = set()
        self._is_open = False
        self._owns_manager = False

    def __repr__(self) -> str:
        return f"CrudExecutor({self.manager!r}, cached={len(self.cache)})"

    @property
    def is_open(self) -> bool:
        return self._is_open

    def open(self) -> "CrudExecutor":
        """
        Open the executor, opening the manager if it is not open yet

        Raises:
            ConnectivityError: If the store cannot be reached
        """
        if self._is_open:
            return self
        if not self.manager.is_open:
            self.manager.open()
            self._owns_manager = True
        self._is_open = True
        logger.info(f"CRUD executor opened on {self.manager.db_type}")
        return self

    def close(self) -> None:
        """Drop cached statements and close the manager if this executor opened it"""
        if not self._is_open:
            return
        self._is_open = False
        self.cache.clear()
        self._known_tables.clear()
        if self._owns_manager:
            self.manager.close()
            self._owns_manager = False
        logger.info(f"CRUD executor closed: {self.stats}")

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def register(self, record_type: Type[BaseModel],
                 columns: Optional[Mapping[str, Column]] = None) -> RecordDescriptor:
        """
        Register a record type with explicit column metadata

        Record types used without registration are described on first use
        from their Annotated Column markers.

        Raises:
            SchemaError: If the record type cannot be mapped onto columns or
                the store cannot hold them
        """
        descriptor = self.registry.register(record_type, columns)
        self.schema.check_descriptor(descriptor)
        return descriptor

    def create(self, table: str, record: BaseModel, *,
               timeout: Optional[float] = None) -> OperationResult[None]:
        """
        Insert one record, creating the table on first use

        Args:
            table: Table name
            record: Record to insert; every field is bound in declaration order
            timeout: Seconds before the call fails with DeadlineExceededError

        Returns:
            Result with no value
        """
        def run(descriptor: RecordDescriptor, deadline: Deadline):
            self._ensure_table(table, descriptor, deadline)
            statement = self.cache.get_or_build(table, OperationKind.CREATE, descriptor,
                                                deadline=deadline)
            self._execute(statement, descriptor.values(record), deadline)
            return None, True

        return self._run(OperationKind.CREATE, table, record, timeout, run)

    def read(self, table: str, record: BaseModel, *,
             where: Optional[Union[Predicate, Tuple[str, Any]]] = None,
             timeout: Optional[float] = None) -> OperationResult[List[BaseModel]]:
        """
        Read records matching a single equality predicate

        Args:
            table: Table name
            record: Query-by-example record; also the type of returned records
            where: Explicit predicate overriding the first non-null field
            timeout: Seconds before the call fails with DeadlineExceededError

        Returns:
            Result carrying a possibly empty list of new records
        """
        def run(descriptor: RecordDescriptor, deadline: Deadline):
            predicate = self._predicate(table, descriptor, record, where)
            if predicate is None or not self._table_present(table, deadline):
                return [], False
            statement = self.cache.get_or_build(table, OperationKind.READ, descriptor,
                                                predicate.column, deadline)
            rows = self._execute(statement, [predicate.value], deadline)
            return [descriptor.from_row(row, table) for row in rows], True

        return self._run(OperationKind.READ, table, record, timeout, run)

    def update(self, table: str, record: BaseModel, *,
               where: Optional[Union[Predicate, Tuple[str, Any]]] = None,
               timeout: Optional[float] = None) -> OperationResult[int]:
        """
        Update matching rows from the record's metadata-bearing fields

        Fields without column metadata are not written; they are listed on the
        cached statement as ``excluded_fields``.

        Returns:
            Result carrying the number of rows updated
        """
        def run(descriptor: RecordDescriptor, deadline: Deadline):
            predicate = self._predicate(table, descriptor, record, where)
            if predicate is None or not self._table_present(table, deadline):
                return 0, False
            statement = self.cache.get_or_build(table, OperationKind.UPDATE, descriptor,
                                                predicate.column, deadline)
            values = descriptor.update_values(record) + [predicate.value]
            return self._execute(statement, values, deadline), True

        return self._run(OperationKind.UPDATE, table, record, timeout, run)

    def delete(self, table: str, record: BaseModel, *,
               where: Optional[Union[Predicate, Tuple[str, Any]]] = None,
               timeout: Optional[float] = None) -> OperationResult[int]:
        """
        Delete rows matching a single equality predicate

        Returns:
            Result carrying the number of rows deleted
        """
        def run(descriptor: RecordDescriptor, deadline: Deadline):
            predicate = self._predicate(table, descriptor, record, where)
            if predicate is None or not self._table_present(table, deadline):
                return 0, False
            statement = self.cache.get_or_build(table, OperationKind.DELETE, descriptor,
                                                predicate.column, deadline)
            return self._execute(statement, [predicate.value], deadline), True

        return self._run(OperationKind.DELETE, table, record, timeout, run)

    def _run(self, kind: OperationKind, table: str, record: BaseModel,
             timeout: Optional[float],
             body: Callable[[RecordDescriptor, Deadline], Tuple[Any, bool]]) -> OperationResult:
        with table_context(table):
            try:
                deadline = Deadline(timeout if timeout is not None else self.default_timeout)
                if not self._is_open:
                    raise ConnectivityError("CRUD executor is not open", table=table)
                IdentifierValidator.validate_table_name(table)
                if not isinstance(record, BaseModel):
                    raise SchemaError(f"Records must be pydantic models, got {type(record).__name__}",
                                      table=table)
                descriptor = self.registry.get(type(record))
                self.schema.check_descriptor(descriptor)
                value, executed = body(descriptor, deadline)
            except PersistenceError as e:
                if isinstance(e, SchemaError) and e.statement:
                    self._forget_table(table)
                return self._failure(kind, table, e)
            except SQLAlchemyError as e:
                return self._failure(kind, table, classify_exception(e, table=table))

        if not executed:
            with self._stats_lock:
                self.stats.noops += 1
            logger.debug(f"{kind.value} on {table} executed no statement")
        return OperationResult.success(value, executed)

    def _failure(self, kind: OperationKind, table: str,
                 error: PersistenceError) -> OperationResult:
        if error.table is None:
            error.table = table
        with self._stats_lock:
            self.stats.failures += 1
        logger.error(f"{kind.value} on {table} failed ({error.kind.value}): {error}")
        if error.statement:
            logger.debug(f"Failed statement: {error.statement}")
        return OperationResult.failure(error)

    def _predicate(self, table: str, descriptor: RecordDescriptor, record: BaseModel,
                   where: Optional[Union[Predicate, Tuple[str, Any]]]) -> Optional[Predicate]:
        """Explicit predicate if given, otherwise the record's first non-null field"""
        if where is None:
            pair = descriptor.filter_pair(record)
            return Predicate(*pair) if pair is not None else None

        column, value = where
        if descriptor.field_for_column(column) is None:
            raise StatementCompileError(
                f"Predicate column '{column}' is not a column of "
                f"{descriptor.record_type.__name__}", table=table,
            )
        if value is None:
            raise StatementCompileError(f"Predicate on '{column}' has no value", table=table)
        return Predicate(column, TypeMapper.to_store(value))

    def _ensure_table(self, table: str, descriptor: RecordDescriptor, deadline: Deadline) -> None:
        """Create the table once; failures are retried by the next call"""
        if table in self._known_tables:
            return

        lock = self.cache.table_lock(table)
        deadline.acquire(lock, f"table lock of {table}", table)
        try:
            if table in self._known_tables:
                return
            with self.manager.transaction(deadline) as conn:
                created = self.schema.ensure_table(conn, table, descriptor)
            self._known_tables.add(table)
            if created:
                with self._stats_lock:
                    self.stats.tables_created += 1
        finally:
            lock.release()

    def _table_present(self, table: str, deadline: Deadline) -> bool:
        """Whether the table exists; reads and writes on a missing table match nothing"""
        if table in self._known_tables:
            return True
        with self.manager.transaction(deadline) as conn:
            exists = self.schema.table_exists(conn, table)
        if exists:
            self._known_tables.add(table)
        return exists

    def _forget_table(self, table: str) -> None:
        """Drop the known-table mark and cached statements of a table the store no longer has"""
        self._known_tables.discard(table)
        discarded = self.cache.discard_table(table)
        logger.warning(f"Forgot table {table} after a schema failure ({discarded} cached statements)")

    def _execute(self, statement: CachedStatement, values: List[Any], deadline: Deadline):
        """
        Bind and execute a cached statement in its own transaction

        Returns:
            Row mappings for READ, affected row count otherwise
        """
        deadline.acquire(statement.lock, f"statement {statement.key}", statement.table)
        try:
            deadline.check(f"executing {statement.kind.value}", statement.table)
            with self.manager.transaction(deadline) as conn:
                start_time = time.time()
                try:
                    with self.manager.interrupt_after(conn, deadline):
                        result = statement.execute(conn, values)
                        if statement.kind == OperationKind.READ:
                            outcome = result.mappings().all()
                        else:
                            outcome = result.rowcount
                except SQLAlchemyError as e:
                    raise classify_exception(e, table=statement.table,
                                             statement=statement.text) from e
                duration = time.time() - start_time
        finally:
            statement.lock.release()

        with self._stats_lock:
            self.stats.statements_executed += 1
        log_query(logger, statement.text, values, duration)
        log_slow_statement(logger, statement.text, duration, self.slow_statement_threshold)
        return outcome
