"""
Type mapping utilities between record field types and column types
"""

import datetime
import decimal
import enum
import re
import types
import uuid
from typing import Any, Union, get_args, get_origin

from ..errors import UnsupportedTypeError
from .naming import to_column_name


class ColumnType(str, enum.Enum):
    """Storage column types emitted in DDL"""
    INTEGER = "INTEGER"
    REAL = "REAL"
    TEXT = "TEXT"
    BLOB = "BLOB"
    NUMERIC = "NUMERIC"
    BOOLEAN = "BOOLEAN"
    TIMESTAMP = "TIMESTAMP"
    DATE = "DATE"
    TIME = "TIME"

    @classmethod
    def parse(cls, type_str: str) -> "ColumnType":
        """
        Normalise a declared column type string

        Args:
            type_str: Type name such as 'int', 'VARCHAR(255)' or 'text'

        Returns:
            Matching ColumnType

        Raises:
            UnsupportedTypeError: If the type name is unknown
        """
        type_str_lower = type_str.lower().strip()

        # Remove size specifications like VARCHAR(255)
        if '(' in type_str_lower:
            type_str_lower = type_str_lower.split('(')[0].strip()

        if type_str_lower in TypeMapper.COMMON_TYPE_MAPPING:
            return TypeMapper.COMMON_TYPE_MAPPING[type_str_lower]

        raise UnsupportedTypeError(f"Unknown column type '{type_str}'")


class TypeMapper:
    """Utility for mapping record field types to column types"""

    # Common type mappings from string representations to column types
    COMMON_TYPE_MAPPING = {
        # Integer types
        'integer': ColumnType.INTEGER,
        'int': ColumnType.INTEGER,
        'bigint': ColumnType.INTEGER,
        'smallint': ColumnType.INTEGER,

        # Float types
        'float': ColumnType.REAL,
        'double': ColumnType.REAL,
        'real': ColumnType.REAL,
        'decimal': ColumnType.NUMERIC,
        'numeric': ColumnType.NUMERIC,

        # String types
        'varchar': ColumnType.TEXT,
        'text': ColumnType.TEXT,
        'char': ColumnType.TEXT,
        'string': ColumnType.TEXT,

        # Date/Time types
        'date': ColumnType.DATE,
        'time': ColumnType.TIME,
        'timestamp': ColumnType.TIMESTAMP,
        'datetime': ColumnType.TIMESTAMP,

        # Boolean type
        'boolean': ColumnType.BOOLEAN,
        'bool': ColumnType.BOOLEAN,

        # Binary types
        'blob': ColumnType.BLOB,
        'binary': ColumnType.BLOB,
    }

    # Python field types; bool must be checked before int
    PYTHON_TYPE_MAPPING = (
        (bool, ColumnType.BOOLEAN),
        (int, ColumnType.INTEGER),
        (float, ColumnType.REAL),
        (str, ColumnType.TEXT),
        (bytes, ColumnType.BLOB),
        (decimal.Decimal, ColumnType.NUMERIC),
        (datetime.datetime, ColumnType.TIMESTAMP),
        (datetime.date, ColumnType.DATE),
        (datetime.time, ColumnType.TIME),
        (uuid.UUID, ColumnType.TEXT),
    )

    # Name patterns for the fallback path, first match wins
    NAME_PATTERNS = (
        (re.compile(r'^(is|has)_'), ColumnType.BOOLEAN),
        (re.compile(r'(^id$|_id$|^count$|_count$)'), ColumnType.INTEGER),
        (re.compile(r'(_at$|_time$|^timestamp$)'), ColumnType.TIMESTAMP),
    )

    @classmethod
    def type_for(cls, field_type: Any) -> ColumnType:
        """
        Map a record field type to a column type

        Args:
            field_type: Field annotation (``int``, ``Optional[str]``, an Enum class...)

        Returns:
            ColumnType for the field

        Raises:
            UnsupportedTypeError: If the type has no column representation
        """
        field_type = cls._unwrap_optional(field_type)

        if isinstance(field_type, type) and issubclass(field_type, enum.Enum):
            return cls._enum_type(field_type)

        if isinstance(field_type, type):
            for python_type, column_type in cls.PYTHON_TYPE_MAPPING:
                if issubclass(field_type, python_type):
                    return column_type

        raise UnsupportedTypeError(f"Unsupported field type '{field_type!r}'")

    @classmethod
    def type_for_name(cls, field_name: str) -> ColumnType:
        """
        Guess a column type from a field name when no type is available

        Args:
            field_name: Field identifier or column name

        Returns:
            ColumnType guessed from naming conventions, TEXT otherwise
        """
        column_name = to_column_name(field_name)
        for pattern, column_type in cls.NAME_PATTERNS:
            if pattern.search(column_name):
                return column_type
        return ColumnType.TEXT

    @classmethod
    def has_shape(cls, field_type: Any) -> bool:
        """Whether an annotation carries usable type information"""
        return field_type is not None and field_type is not Any and \
            cls._unwrap_optional(field_type) is not Any

    @staticmethod
    def to_store(value: Any) -> Any:
        """
        Convert a field value into a driver-neutral bind value

        Args:
            value: Python value taken from a record field

        Returns:
            Value safe to hand to the DB-API driver
        """
        if value is None:
            return None
        if isinstance(value, enum.Enum):
            return value.value
        if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
            return value.isoformat()
        if isinstance(value, decimal.Decimal):
            return str(value)
        if isinstance(value, uuid.UUID):
            return str(value)
        return value

    @staticmethod
    def from_store(value: Any) -> Any:
        """Convert a fetched column value into something pydantic validates"""
        if isinstance(value, memoryview):
            return value.tobytes()
        return value

    @classmethod
    def _enum_type(cls, enum_class: type) -> ColumnType:
        """Column type for an Enum, based on its member values"""
        value_types = {type(member.value) for member in enum_class}
        if len(value_types) != 1:
            raise UnsupportedTypeError(
                f"Enum '{enum_class.__name__}' mixes value types {sorted(t.__name__ for t in value_types)}"
            )
        return cls.type_for(value_types.pop())

    @staticmethod
    def _unwrap_optional(field_type: Any) -> Any:
        """Strip Optional[...] / X | None down to X"""
        origin = get_origin(field_type)
        if origin is Union or origin is getattr(types, 'UnionType', None):
            args = [arg for arg in get_args(field_type) if arg is not type(None)]
            if len(args) == 1:
                return args[0]
            raise UnsupportedTypeError(f"Union field type '{field_type!r}' is ambiguous")
        return field_type

