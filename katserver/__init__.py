"""
KatServer

A plugin-hosting server whose messages are persisted by a home-grown
object-relational layer that maps pydantic records onto tables created
lazily from the record's shape.

Components:
- database: record descriptors, schema builder, statement cache, CRUD executor
- storage: message storage keyed by message group
- config_manager: YAML configuration with environment overrides
- logging_utils: table-aware logging
"""

__version__ = "0.1.0"
__author__ = "KatServer"
