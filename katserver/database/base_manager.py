"""
Connection provider for the persistence layer using SQLAlchemy Core
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, Dialect, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .config import get_persistence_config
from .deadline import Deadline
from .errors import ConnectivityError, PersistenceError, classify_exception
from .logging_config import DatabaseLoggerAdapter

logger = logging.getLogger('db.manager')


class DatabaseManager:
    """Leases connections from an engine's pool for persistence operations"""

    def __init__(self, engine: Engine, db_type: Optional[str] = None,
                 persistence_config: Optional[Dict[str, Any]] = None):
        """
        Initialize database manager with SQLAlchemy engine

        Args:
            engine: SQLAlchemy Engine instance
            db_type: Database type the engine was created for
            persistence_config: Settings shaped like PERSISTENCE_CONFIG
        """
        self.engine = engine
        self.db_type = db_type or engine.dialect.name
        self.persistence_config = persistence_config or get_persistence_config()
        self.single_connection = isinstance(engine.pool, StaticPool)
        self._lease_lock = threading.Lock()
        self._is_open = False
        self.log = DatabaseLoggerAdapter(logger, {'db_path': engine.url.database or 'unknown'})

    def __repr__(self) -> str:
        return f"DatabaseManager({self.db_type}, open={self._is_open})"

    @property
    def dialect(self) -> Dialect:
        return self.engine.dialect

    @property
    def is_open(self) -> bool:
        return self._is_open

    def open(self) -> "DatabaseManager":
        """
        Check the store is reachable and mark the manager usable

        Raises:
            ConnectivityError: If no connection can be established
        """
        if self._is_open:
            return self
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            self.log.connection_event('error', str(e))
            raise ConnectivityError(f"Cannot connect to {self.db_type} database: {e}") from e

        self._is_open = True
        self.log.info(f"Opened {self.db_type} database")
        return self

    def close(self) -> None:
        """Close database connections"""
        if self._is_open:
            self.log.info(f"Closing {self.db_type} database")
        self._is_open = False
        self.engine.dispose()

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @contextmanager
    def transaction(self, deadline: Optional[Deadline] = None) -> Iterator[Connection]:
        """
        Lease a connection and run the block in one transaction

        Commits when the block succeeds and rolls back when it raises. A
        single-connection store serialises leases.

        Args:
            deadline: Deadline bounding the wait for a lease

        Yields:
            Open connection inside a transaction
        """
        if not self._is_open:
            raise ConnectivityError(f"{self.db_type} database is not open")

        deadline = deadline or Deadline()
        if self.single_connection:
            deadline.acquire(self._lease_lock, "connection lease")
        try:
            deadline.check("leasing a connection")
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            raise classify_exception(e) from e
        finally:
            if self.single_connection:
                self._lease_lock.release()

    @contextmanager
    def interrupt_after(self, conn: Connection, deadline: Optional[Deadline]) -> Iterator[None]:
        """
        Interrupt the running statement when the deadline passes

        Only SQLite exposes statement interruption; for other stores the
        block runs unbounded once it has started.
        """
        remaining = deadline.remaining() if deadline is not None else None
        if remaining is None or self.db_type != 'sqlite':
            yield
            return

        dbapi_connection = conn.connection.dbapi_connection
        timer = threading.Timer(remaining, dbapi_connection.interrupt)
        timer.daemon = True
        timer.start()
        try:
            yield
        finally:
            timer.cancel()

    def execute_query(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Execute SELECT query and return rows as dictionaries

        Args:
            query: SQL query string
            params: Optional query parameters

        Returns:
            List of result dictionaries
        """
        with self.transaction() as conn:
            result = conn.execute(text(query), params or {})
            if not result.returns_rows:
                return []
            return [dict(row._mapping) for row in result]

    def table_exists(self, table_name: str) -> bool:
        """
        Check if table exists in database

        Args:
            table_name: Name of table to check

        Returns:
            True if table exists, False otherwise
        """
        with self.transaction() as conn:
            return conn.dialect.has_table(conn, table_name)

    def get_table_names(self) -> List[str]:
        """
        Get list of all table names in database

        Returns:
            List of table names
        """
        with self.transaction() as conn:
            return conn.dialect.get_table_names(conn)

    def health_check(self) -> Dict[str, Any]:
        """
        Test database connection and return status information

        Returns:
            Dictionary with connection test results
        """
        result = {
            'success': False,
            'error': None,
            'response_time_ms': None,
            'database_type': self.db_type,
            'database_version': None,
            'table_count': None,
        }

        start_time = time.time()
        try:
            with self.transaction(Deadline(self.persistence_config['connection']['pool_timeout'])) as conn:
                conn.execute(text("SELECT 1"))
                if self.db_type == 'sqlite':
                    result['database_version'] = conn.execute(text("SELECT sqlite_version()")).scalar()
                elif self.db_type == 'postgresql':
                    result['database_version'] = conn.execute(text("SELECT version()")).scalar()
                result['table_count'] = len(conn.dialect.get_table_names(conn))
            result['success'] = True
        except (SQLAlchemyError, PersistenceError) as e:
            result['error'] = str(e)
            self.log.warning(f"Health check failed: {e}")

        result['response_time_ms'] = round((time.time() - start_time) * 1000, 2)
        return result
