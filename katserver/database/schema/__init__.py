"""
Schema inference for record types.

- Record descriptors derived once per record type
- DDL generation for lazily created tables
"""

from .descriptor import Column, FieldSpec, RecordDescriptor, RecordRegistry, describe
from .builder import SchemaBuilder

__all__ = [
    'Column',
    'FieldSpec',
    'RecordDescriptor',
    'RecordRegistry',
    'SchemaBuilder',
    'describe',
]
