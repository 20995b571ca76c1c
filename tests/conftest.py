"""
Shared fixtures for persistence tests
"""

import logging
from typing import List

import pytest
from sqlalchemy import event

from katserver.database import CrudExecutor, DatabaseConfig, DatabaseFactory


class StatementCounter:
    """Collects every statement sent to the DB-API cursor"""

    def __init__(self, engine):
        self.engine = engine
        self.statements: List[str] = []
        event.listen(engine, 'before_cursor_execute', self._record)

    def _record(self, conn, cursor, statement, parameters, context, executemany):
        self.statements.append(statement)

    @property
    def count(self) -> int:
        return len(self.statements)

    def reset(self) -> None:
        self.statements.clear()

    def remove(self) -> None:
        event.remove(self.engine, 'before_cursor_execute', self._record)


@pytest.fixture
def memory_manager():
    """Open manager on an in-memory SQLite database"""
    config = DatabaseConfig.get_default_config('sqlite')
    manager = DatabaseFactory.create_from_config(config)
    manager.open()
    yield manager
    manager.close()


@pytest.fixture
def file_manager(tmp_path):
    """Open manager on a SQLite database file"""
    config = DatabaseConfig.get_default_config('sqlite', str(tmp_path / 'katserver.db'))
    manager = DatabaseFactory.create_from_config(config)
    manager.open()
    yield manager
    manager.close()


@pytest.fixture
def executor(memory_manager):
    """CRUD executor over the in-memory manager"""
    with CrudExecutor(memory_manager) as crud:
        yield crud


@pytest.fixture
def file_executor(file_manager):
    """CRUD executor over the file manager"""
    with CrudExecutor(file_manager) as crud:
        yield crud


@pytest.fixture
def statement_counter(memory_manager):
    """Counts statements executed on the in-memory manager's engine"""
    counter = StatementCounter(memory_manager.engine)
    yield counter
    counter.remove()


@pytest.fixture
def restore_db_logger():
    """Undo handler changes made to the 'db' logger by a test"""
    db_logger = logging.getLogger('db')
    handlers = db_logger.handlers[:]
    level = db_logger.level
    propagate = db_logger.propagate
    yield db_logger
    for handler in db_logger.handlers[:]:
        if handler not in handlers:
            db_logger.removeHandler(handler)
            handler.close()
    db_logger.setLevel(level)
    db_logger.propagate = propagate
