"""Unit tests for error classification, operation results and deadlines."""

import sqlite3
import threading

import pytest
from sqlalchemy import exc as sa_exc

from katserver.database import (ConnectivityError, Deadline, DeadlineExceededError, ErrorKind,
                                ExecutionError, OperationResult, SchemaError,
                                StatementCompileError, classify_exception)


def operational(message, **kwargs):
    return sa_exc.OperationalError("SELECT 1", (), sqlite3.OperationalError(message), **kwargs)


class TestClassifyException:
    """Test translation of driver errors into error kinds."""

    def test_integrity_error(self):
        error = sa_exc.IntegrityError(
            "INSERT INTO lobby VALUES (?)", ('m1',),
            sqlite3.IntegrityError("UNIQUE constraint failed: lobby.message_id")
        )
        translated = classify_exception(error, table='lobby')

        assert isinstance(translated, ExecutionError)
        assert translated.kind == ErrorKind.EXECUTION
        assert translated.table == 'lobby'
        assert translated.__cause__ is error
        assert "UNIQUE constraint failed" in str(translated)
        assert not translated.retryable

    @pytest.mark.parametrize('message,expected', [
        ("database is locked", ConnectivityError),
        ("unable to open database file", ConnectivityError),
        ("interrupted", DeadlineExceededError),
        ('near "FROM": syntax error', StatementCompileError),
        ("no such column: rank", StatementCompileError),
        ("no such table: lobby", SchemaError),
        ("table lobby already exists", SchemaError),
        ("datatype mismatch", ExecutionError),
    ])
    def test_operational_messages(self, message, expected):
        assert type(classify_exception(operational(message))) is expected

    def test_invalidated_connection(self):
        error = operational("server went away", connection_invalidated=True)
        translated = classify_exception(error)
        assert isinstance(translated, ConnectivityError)
        assert translated.retryable

    def test_programming_error(self):
        error = sa_exc.ProgrammingError("SELECT", (), sqlite3.ProgrammingError("bad cursor use"))
        assert isinstance(classify_exception(error), StatementCompileError)

    def test_pool_timeout(self):
        assert isinstance(classify_exception(sa_exc.TimeoutError("QueuePool limit")), ConnectivityError)

    def test_persistence_error_passes_through(self):
        error = SchemaError("bad record", table='lobby')
        assert classify_exception(error) is error

    def test_statement_attached(self):
        translated = classify_exception(operational("datatype mismatch"),
                                        statement="UPDATE lobby SET a = ? WHERE b = ?")
        assert translated.statement == "UPDATE lobby SET a = ? WHERE b = ?"


class TestOperationResult:
    """Test explicit success and failure values."""

    def test_success(self):
        result = OperationResult.success([1, 2])
        assert result
        assert result.ok
        assert result.executed
        assert result.kind is None
        assert result.unwrap() == [1, 2]

    def test_noop_success(self):
        result = OperationResult.success(0, executed=False)
        assert result.ok
        assert not result.executed
        assert result.unwrap() == 0

    def test_failure(self):
        error = ExecutionError("constraint failed", table='lobby')
        result = OperationResult.failure(error)

        assert not result
        assert result.kind == ErrorKind.EXECUTION
        assert result.value is None
        with pytest.raises(ExecutionError):
            result.unwrap()

    def test_empty_read_is_not_failure(self):
        assert OperationResult.success([]).ok


class TestDeadline:
    """Test deadline arithmetic and lock waits."""

    def test_unbounded(self):
        deadline = Deadline()
        assert deadline.remaining() is None
        assert not deadline.expired
        deadline.check("anything")

    def test_negative_timeout(self):
        with pytest.raises(ValueError):
            Deadline(-1)

    def test_zero_timeout_expires(self):
        deadline = Deadline(0)
        assert deadline.expired
        assert deadline.remaining() == 0.0
        with pytest.raises(DeadlineExceededError) as exc_info:
            deadline.check("leasing a connection", table='lobby')
        assert exc_info.value.table == 'lobby'
        assert exc_info.value.kind == ErrorKind.DEADLINE

    def test_remaining_is_bounded(self):
        remaining = Deadline(10).remaining()
        assert 0 < remaining <= 10

    def test_acquire_free_lock(self):
        lock = threading.Lock()
        Deadline(1).acquire(lock, "statement")
        assert lock.locked()
        lock.release()

    def test_acquire_held_lock_times_out(self):
        lock = threading.Lock()
        lock.acquire()
        try:
            with pytest.raises(DeadlineExceededError):
                Deadline(0.05).acquire(lock, "statement", table='lobby')
        finally:
            lock.release()
