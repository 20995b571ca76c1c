"""
DDL generation and lazy table creation from record descriptors
"""

import logging
import time
from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, Dialect
from sqlalchemy.exc import SQLAlchemyError

from ..errors import SchemaError, classify_exception
from ..logging_config import log_query
from ..utils.identifiers import IdentifierValidator
from ..utils.type_mapping import ColumnType
from .descriptor import FieldSpec, RecordDescriptor

logger = logging.getLogger('db.schema')


class SchemaBuilder:
    """Builds and executes CREATE TABLE statements for record descriptors"""

    # Dialect spelling of column types that differ from the generic names
    COLUMN_TYPE_NAMES = {
        # NUMERIC affinity stores decimals as REAL, TEXT keeps every digit
        'sqlite': {ColumnType.NUMERIC: 'TEXT'},
        'postgresql': {ColumnType.REAL: 'DOUBLE PRECISION', ColumnType.BLOB: 'BYTEA'},
    }

    # Dialects whose INSERT assigns a key when the primary key is bound as NULL
    AUTOINCREMENT_DIALECTS = ('sqlite',)

    def __init__(self, dialect: Optional[Dialect] = None):
        """
        Initialize schema builder

        Args:
            dialect: SQLAlchemy dialect used for identifier quoting and keywords
        """
        self.dialect = dialect
        self.dialect_name = dialect.name if dialect is not None else 'sqlite'

    def build_create_table(self, table_name: str, descriptor: RecordDescriptor) -> str:
        """
        Generate the DDL for a table holding records of one type

        Args:
            table_name: Name of the table
            descriptor: Descriptor of the representative record type

        Returns:
            CREATE TABLE statement text
        """
        self.check_descriptor(descriptor)
        table = IdentifierValidator.quote_table_name(table_name, self.dialect)
        column_defs = [self._column_definition(spec, spec is descriptor.primary_key)
                       for spec in descriptor]
        return f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(column_defs)})"

    def table_exists(self, conn: Connection, table_name: str) -> bool:
        """
        Check if table exists in the store

        Args:
            conn: Open SQLAlchemy connection
            table_name: Name of table to check

        Returns:
            True if table exists, False otherwise
        """
        return conn.dialect.has_table(conn, table_name)

    def ensure_table(self, conn: Connection, table_name: str,
                     descriptor: RecordDescriptor) -> bool:
        """
        Create the table if it does not exist yet

        Args:
            conn: Open SQLAlchemy connection inside a transaction
            table_name: Name of the table
            descriptor: Descriptor of the representative record type

        Returns:
            True if the table was created by this call, False if it existed

        Raises:
            SchemaError: If the DDL could not be executed
        """
        try:
            if self.table_exists(conn, table_name):
                return False
        except SQLAlchemyError as e:
            raise classify_exception(e, table=table_name) from e

        ddl = self.build_create_table(table_name, descriptor)
        start_time = time.time()
        try:
            conn.execute(text(ddl))
        except SQLAlchemyError as e:
            error = classify_exception(e, table=table_name, statement=ddl)
            if error.retryable:
                raise error from e
            raise SchemaError(f"Failed to create table {table_name}: {e}",
                              table=table_name, statement=ddl) from e

        log_query(logger, ddl, duration=time.time() - start_time, level='INFO')
        logger.info(f"Created table {table_name} with columns {descriptor.column_names}")
        return True

    def check_descriptor(self, descriptor: RecordDescriptor) -> None:
        """
        Verify the store can hold records of a descriptor

        Raises:
            SchemaError: If the primary key is AUTOINCREMENT on a dialect
                that does not assign keys for NULL inserts
        """
        primary_key = descriptor.primary_key
        if primary_key.autoincrement and self.dialect_name not in self.AUTOINCREMENT_DIALECTS:
            raise SchemaError(
                f"AUTOINCREMENT primary key '{primary_key.field_name}' of "
                f"{descriptor.record_type.__name__} is not supported on {self.dialect_name}"
            )

    def column_type_name(self, column_type: ColumnType) -> str:
        """Spelling of a column type in this builder's dialect"""
        return self.COLUMN_TYPE_NAMES.get(self.dialect_name, {}).get(column_type, column_type.value)

    def _column_definition(self, spec: FieldSpec, is_primary_key: bool) -> str:
        column = IdentifierValidator.quote_column_name(spec.column_name, self.dialect)
        parts: List[str] = [column, self.column_type_name(spec.column_type)]

        if not spec.nullable:
            parts.append('NOT NULL')
        if is_primary_key:
            parts.append('PRIMARY KEY')
            if spec.autoincrement:
                parts.append('AUTOINCREMENT')
        if spec.unique:
            parts.append('UNIQUE')

        return ' '.join(parts)
