"""Unit tests for record descriptors."""

import datetime
import threading
from typing import Annotated, Any, Optional

import pytest
from pydantic import BaseModel

from katserver.database.errors import (InvalidIdentifierError, MappingError, SchemaError,
                                       UnsupportedTypeError)
from katserver.database.schema import Column, RecordRegistry, describe
from katserver.database.utils import ColumnType
from tests.records import Player, Profile


class CamelRecord(BaseModel):
    messageGroup: Optional[str] = None
    senderId: Optional[int] = None


class Untyped(BaseModel):
    user_id: Any = None
    created_at: Any = None
    note: Any = None


class Declared(BaseModel):
    code: Annotated[Optional[str], Column(name='item_code', type='VARCHAR(16)', nullable=False,
                                          unique=True)] = None
    item_id: Annotated[Optional[int], Column(primary_key=True, autoincrement=True)] = None


class TestDescribe:
    """Test descriptor derivation from record types."""

    def test_player_layout(self):
        descriptor = describe(Player)
        assert descriptor.column_names == ['id', 'name', 'score']
        assert [spec.column_type for spec in descriptor] == [
            ColumnType.INTEGER, ColumnType.TEXT, ColumnType.INTEGER
        ]
        assert descriptor.primary_key.column_name == 'id'
        assert all(spec.has_metadata for spec in descriptor)

    def test_inferred_column_names(self):
        descriptor = describe(CamelRecord)
        assert descriptor.column_names == ['message_group', 'sender_id']
        assert descriptor.field_for_column('sender_id').field_name == 'senderId'

    def test_first_field_is_implicit_primary_key(self):
        descriptor = describe(CamelRecord)
        assert descriptor.primary_key.field_name == 'messageGroup'

    def test_name_fallback_for_untyped_fields(self):
        descriptor = describe(Untyped)
        assert [spec.column_type for spec in descriptor] == [
            ColumnType.INTEGER, ColumnType.TIMESTAMP, ColumnType.TEXT
        ]

    def test_declared_metadata(self):
        descriptor = describe(Declared)
        code = descriptor.field_for_column('item_code')
        assert code.column_type == ColumnType.TEXT
        assert code.nullable is False
        assert code.unique is True
        assert descriptor.primary_key.field_name == 'item_id'
        assert descriptor.primary_key.autoincrement is True

    def test_column_overrides(self):
        descriptor = describe(Profile, columns={'bio': Column(name='biography')})
        assert descriptor.column_names == ['id', 'nickname', 'biography']
        assert [spec.field_name for spec in descriptor.updatable_fields] == ['id', 'nickname', 'bio']

    def test_override_for_unknown_field(self):
        with pytest.raises(SchemaError):
            describe(Player, columns={'rank': Column()})

    def test_excluded_from_update(self):
        descriptor = describe(Profile)
        assert [spec.field_name for spec in descriptor.updatable_fields] == ['id', 'nickname']
        assert [spec.field_name for spec in descriptor.excluded_from_update] == ['bio']

    def test_multiple_primary_keys(self):
        class TwoKeys(BaseModel):
            a: Annotated[Optional[int], Column(primary_key=True)] = None
            b: Annotated[Optional[int], Column(primary_key=True)] = None

        with pytest.raises(SchemaError):
            describe(TwoKeys)

    def test_autoincrement_requires_integer_primary_key(self):
        class TextCounter(BaseModel):
            key: Annotated[Optional[str], Column(primary_key=True, autoincrement=True)] = None

        class NotKey(BaseModel):
            key: Annotated[Optional[int], Column(primary_key=True)] = None
            seq: Annotated[Optional[int], Column(autoincrement=True)] = None

        with pytest.raises(SchemaError):
            describe(TextCounter)
        with pytest.raises(SchemaError):
            describe(NotKey)

    def test_unsupported_field_type(self):
        class Blobby(BaseModel):
            id: Optional[int] = None
            tags: Optional[dict] = None

        with pytest.raises(UnsupportedTypeError):
            describe(Blobby)

    def test_duplicate_column_names(self):
        class Clash(BaseModel):
            senderId: Optional[int] = None
            sender_id: Optional[int] = None

        with pytest.raises(SchemaError):
            describe(Clash)

    def test_invalid_column_name(self):
        class BadName(BaseModel):
            id: Annotated[Optional[int], Column(name='id; drop table x')] = None

        with pytest.raises(InvalidIdentifierError):
            describe(BadName)

    def test_not_a_model(self):
        with pytest.raises(SchemaError):
            describe(dict)


class TestRecordValues:
    """Test value extraction and row mapping."""

    def test_values_in_declaration_order(self):
        descriptor = describe(Player)
        assert descriptor.values(Player(id=1, name='a', score=10)) == [1, 'a', 10]

    def test_values_are_converted(self):
        class Event(BaseModel):
            id: Optional[int] = None
            at: Optional[datetime.datetime] = None

        descriptor = describe(Event)
        values = descriptor.values(Event(id=1, at=datetime.datetime(2024, 1, 2, 3, 4, 5)))
        assert values == [1, '2024-01-02T03:04:05']

    def test_update_values_skip_metadata_less_fields(self):
        descriptor = describe(Profile)
        assert descriptor.update_values(Profile(id=1, nickname='kat', bio='x')) == [1, 'kat']

    def test_filter_pair_first_non_null(self):
        descriptor = describe(Player)
        assert descriptor.filter_pair(Player(id=1, name='a')) == ('id', 1)
        assert descriptor.filter_pair(Player(name='a', score=3)) == ('name', 'a')
        assert descriptor.filter_pair(Player(score=0)) == ('score', 0)
        assert descriptor.filter_pair(Player()) is None

    def test_from_row(self):
        descriptor = describe(Player)
        record = descriptor.from_row({'id': 1, 'name': 'a', 'score': 10})
        assert record == Player(id=1, name='a', score=10)

    def test_from_row_unknown_column(self):
        descriptor = describe(Player)
        with pytest.raises(MappingError):
            descriptor.from_row({'id': 1, 'name': 'a', 'score': 10, 'rank': 3}, table='players')

    def test_from_row_missing_column(self):
        descriptor = describe(Player)
        with pytest.raises(MappingError):
            descriptor.from_row({'id': 1, 'name': 'a'})

    def test_from_row_invalid_value(self):
        descriptor = describe(Player)
        with pytest.raises(MappingError) as exc_info:
            descriptor.from_row({'id': 'not a number', 'name': 'a', 'score': 1})
        assert exc_info.value.kind.value == 'mapping'


class TestRecordRegistry:
    """Test descriptor registry."""

    def test_get_registers_once(self):
        registry = RecordRegistry()
        first = registry.get(Player)
        assert Player in registry
        assert registry.get(Player) is first

    def test_register_replaces(self):
        registry = RecordRegistry()
        registry.get(Profile)
        replaced = registry.register(Profile, columns={'bio': Column()})
        assert registry.get(Profile) is replaced
        assert replaced.excluded_from_update == []

    def test_concurrent_get_returns_one_descriptor(self):
        registry = RecordRegistry()
        barrier = threading.Barrier(8)
        seen = []

        def worker():
            barrier.wait()
            seen.append(registry.get(Player))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(seen) == 8
        assert all(descriptor is seen[0] for descriptor in seen)
