"""
Identifier validation for table and column names.

Table names are caller-supplied (a message group, for instance) and end up in
DDL/DML text, so they are checked against a pattern and then quoted with the
dialect's identifier preparer before interpolation.
"""

import re
from typing import Optional

from sqlalchemy.engine import Dialect

from ..errors import InvalidIdentifierError


class IdentifierValidator:
    """Validates identifiers interpolated into statement text."""

    TABLE_NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_-]{0,127}$')
    COLUMN_NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]{0,127}$')

    # Reserved by SQLite for internal tables
    RESERVED_PREFIXES = ('sqlite_',)

    @classmethod
    def validate_table_name(cls, table_name: str) -> str:
        """Validate a table name.

        Args:
            table_name: Table name to validate

        Returns:
            Validated table name

        Raises:
            InvalidIdentifierError: If the name is empty, too long, reserved or
                contains characters outside ``[A-Za-z0-9_-]``
        """
        if not isinstance(table_name, str) or not cls.TABLE_NAME_PATTERN.match(table_name):
            raise InvalidIdentifierError(f"Table name {table_name!r} is not a valid identifier")
        if table_name.lower().startswith(cls.RESERVED_PREFIXES):
            raise InvalidIdentifierError(f"Table name {table_name!r} uses a reserved prefix")
        return table_name

    @classmethod
    def validate_column_name(cls, column_name: str) -> str:
        """Validate a column name.

        Args:
            column_name: Column name to validate

        Returns:
            Validated column name

        Raises:
            InvalidIdentifierError: If the name contains characters outside ``[A-Za-z0-9_]``
        """
        if not isinstance(column_name, str) or not cls.COLUMN_NAME_PATTERN.match(column_name):
            raise InvalidIdentifierError(f"Column name {column_name!r} is not a valid identifier")
        return column_name

    @classmethod
    def quote_table_name(cls, table_name: str, dialect: Optional[Dialect] = None) -> str:
        """Validate and quote a table name for interpolation.

        The dialect preparer only adds quotes when the name needs them (reserved
        words, dashes, mixed case), so plain names are emitted verbatim.

        Args:
            table_name: Table name to quote
            dialect: SQLAlchemy dialect of the target store

        Returns:
            Identifier safe to embed in statement text
        """
        cls.validate_table_name(table_name)
        if dialect is None:
            return cls.escape_identifier(table_name)
        return dialect.identifier_preparer.quote(table_name)

    @classmethod
    def quote_column_name(cls, column_name: str, dialect: Optional[Dialect] = None) -> str:
        cls.validate_column_name(column_name)
        if dialect is None:
            return column_name
        return dialect.identifier_preparer.quote(column_name)

    @staticmethod
    def escape_identifier(identifier: str) -> str:
        """Quote an identifier with standard SQL double quotes."""
        return '"' + identifier.replace('"', '""') + '"'
