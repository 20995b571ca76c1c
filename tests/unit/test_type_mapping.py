"""Unit tests for column type mapping and column naming."""

import datetime
import decimal
import enum
import uuid
from typing import Any, Dict, List, Optional, Union

import pytest

from katserver.database.errors import UnsupportedTypeError
from katserver.database.utils import ColumnType, TypeMapper, to_column_name


class Colour(str, enum.Enum):
    RED = "red"
    GREEN = "green"


class Priority(enum.IntEnum):
    LOW = 1
    HIGH = 2


class Mixed(enum.Enum):
    ONE = 1
    TWO = "two"


class TestTypeMapper:
    """Test field type to column type mapping."""

    @pytest.mark.parametrize('field_type,expected', [
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
    ])
    def test_python_types(self, field_type, expected):
        assert TypeMapper.type_for(field_type) == expected

    def test_optional_unwraps(self):
        assert TypeMapper.type_for(Optional[int]) == ColumnType.INTEGER
        assert TypeMapper.type_for(Union[str, None]) == ColumnType.TEXT
        assert TypeMapper.type_for(datetime.datetime | None) == ColumnType.TIMESTAMP

    def test_enum_uses_value_type(self):
        assert TypeMapper.type_for(Colour) == ColumnType.TEXT
        assert TypeMapper.type_for(Priority) == ColumnType.INTEGER

    @pytest.mark.parametrize('field_type', [dict, list, Dict[str, int], List[int], Mixed,
                                            Union[int, str], object, bytearray])
    def test_unsupported_types_raise(self, field_type):
        with pytest.raises(UnsupportedTypeError):
            TypeMapper.type_for(field_type)

    @pytest.mark.parametrize('field_name,expected', [
        ('id', ColumnType.INTEGER),
        ('sender_id', ColumnType.INTEGER),
        ('retry_count', ColumnType.INTEGER),
        ('is_active', ColumnType.BOOLEAN),
        ('hasAvatar', ColumnType.BOOLEAN),
        ('created_at', ColumnType.TIMESTAMP),
        ('timestamp', ColumnType.TIMESTAMP),
        ('message_content', ColumnType.TEXT),
    ])
    def test_type_for_name(self, field_name, expected):
        assert TypeMapper.type_for_name(field_name) == expected

    def test_has_shape(self):
        assert TypeMapper.has_shape(int)
        assert TypeMapper.has_shape(Optional[str])
        assert not TypeMapper.has_shape(Any)
        assert not TypeMapper.has_shape(Optional[Any])
        assert not TypeMapper.has_shape(None)

    def test_to_store(self):
        moment = datetime.datetime(2024, 5, 1, 12, 30, 0)
        token = uuid.UUID('12345678-1234-5678-1234-567812345678')

        assert TypeMapper.to_store(None) is None
        assert TypeMapper.to_store(Colour.RED) == "red"
        assert TypeMapper.to_store(Priority.HIGH) == 2
        assert TypeMapper.to_store(moment) == "2024-05-01T12:30:00"
        assert TypeMapper.to_store(datetime.date(2024, 5, 1)) == "2024-05-01"
        assert TypeMapper.to_store(decimal.Decimal("1.50")) == "1.50"
        assert TypeMapper.to_store(token) == str(token)
        assert TypeMapper.to_store(b"ab") == b"ab"
        assert TypeMapper.to_store(42) == 42

    def test_from_store(self):
        assert TypeMapper.from_store(memoryview(b"\x00\xff")) == b"\x00\xff"
        assert TypeMapper.from_store("12.50") == "12.50"
        assert TypeMapper.from_store(None) is None


class TestColumnType:
    """Test declared column type normalisation."""

    @pytest.mark.parametrize('declared,expected', [
        ('int', ColumnType.INTEGER),
        ('INTEGER', ColumnType.INTEGER),
        ('VARCHAR(255)', ColumnType.TEXT),
        (' text ', ColumnType.TEXT),
        ('double', ColumnType.REAL),
        ('DECIMAL(10, 2)', ColumnType.NUMERIC),
        ('datetime', ColumnType.TIMESTAMP),
        ('bool', ColumnType.BOOLEAN),
    ])
    def test_parse(self, declared, expected):
        assert ColumnType.parse(declared) == expected

    def test_parse_unknown(self):
        with pytest.raises(UnsupportedTypeError):
            ColumnType.parse('geometry')


class TestColumnNaming:
    """Test camel-case to snake-case column naming."""

    @pytest.mark.parametrize('identifier,expected', [
        ('messageGroup', 'message_group'),
        ('senderId', 'sender_id'),
        ('score', 'score'),
        ('message_group', 'message_group'),
        ('Name', 'name'),
        ('userID', 'user_i_d'),
    ])
    def test_to_column_name(self, identifier, expected):
        assert to_column_name(identifier) == expected
