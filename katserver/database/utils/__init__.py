"""
Database utilities
"""

from .type_mapping import ColumnType, TypeMapper
from .naming import to_column_name
from .identifiers import IdentifierValidator

__all__ = [
    'ColumnType',
    'TypeMapper',
    'IdentifierValidator',
    'to_column_name',
]
