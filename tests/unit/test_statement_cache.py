"""Unit tests for the statement cache."""

import logging
import threading
from typing import Optional

import pytest
from pydantic import BaseModel
from sqlalchemy.dialects import postgresql, sqlite

from katserver.database.deadline import Deadline
from katserver.database.errors import (DeadlineExceededError, InvalidIdentifierError,
                                       StatementCompileError)
from katserver.database.schema import describe
from katserver.database.statements import (CachedStatement, OperationKind, StatementCache,
                                           StatementKey, render_placeholders)
from tests.records import Player, Profile


class Plain(BaseModel):
    id: Optional[int] = None
    label: Optional[str] = None


@pytest.fixture
def cache():
    return StatementCache(sqlite.dialect())


class TestStatementText:
    """Test generated statement text."""

    def test_insert(self, cache):
        statement = cache.get_or_build('players', OperationKind.CREATE, describe(Player))
        assert statement.text == "INSERT INTO players VALUES (?, ?, ?)"
        assert statement.param_count == 3
        assert statement.key == StatementKey('players', OperationKind.CREATE)

    def test_select(self, cache):
        statement = cache.get_or_build('players', OperationKind.READ, describe(Player), 'name')
        assert statement.text == "SELECT * FROM players WHERE name = ?"
        assert statement.param_count == 1

    def test_delete(self, cache):
        statement = cache.get_or_build('players', OperationKind.DELETE, describe(Player), 'id')
        assert statement.text == "DELETE FROM players WHERE id = ?"

    def test_update(self, cache):
        statement = cache.get_or_build('players', OperationKind.UPDATE, describe(Player), 'id')
        assert statement.text == "UPDATE players SET id = ?, name = ?, score = ? WHERE id = ?"
        assert statement.param_count == 4
        assert statement.excluded_fields == ()

    def test_update_excludes_metadata_less_fields(self, cache):
        statement = cache.get_or_build('profiles', OperationKind.UPDATE, describe(Profile), 'id')
        assert statement.text == "UPDATE profiles SET id = ?, nickname = ? WHERE id = ?"
        assert statement.excluded_fields == ('bio',)

    def test_update_exclusion_warned_once(self, cache, caplog):
        descriptor = describe(Profile)
        with caplog.at_level(logging.WARNING, logger='db.statements'):
            cache.get_or_build('profiles', OperationKind.UPDATE, descriptor, 'id')
            cache.get_or_build('profiles', OperationKind.UPDATE, descriptor, 'nickname')

        warnings = [r for r in caplog.records if 'skips fields without column metadata' in r.getMessage()]
        assert len(warnings) == 1
        assert "['bio']" in warnings[0].getMessage()

    def test_update_without_metadata(self, cache):
        with pytest.raises(StatementCompileError):
            cache.get_or_build('plain', OperationKind.UPDATE, describe(Plain), 'id')
        assert len(cache) == 0

    def test_unknown_filter_column(self, cache):
        with pytest.raises(StatementCompileError):
            cache.get_or_build('players', OperationKind.READ, describe(Player), 'rank')

    def test_missing_filter_column(self, cache):
        with pytest.raises(StatementCompileError):
            cache.get_or_build('players', OperationKind.DELETE, describe(Player))

    def test_invalid_table_name(self, cache):
        with pytest.raises(InvalidIdentifierError):
            cache.get_or_build("players WHERE 1=1 --", OperationKind.CREATE, describe(Player))

    def test_format_paramstyle(self):
        cache = StatementCache(postgresql.dialect())
        statement = cache.get_or_build('players', OperationKind.UPDATE, describe(Player), 'id')
        assert statement.text == "UPDATE players SET id = ?, name = ?, score = ? WHERE id = ?"
        assert statement.driver_sql == "UPDATE players SET id = %s, name = %s, score = %s WHERE id = %s"


class TestRenderPlaceholders:
    """Test paramstyle rendering."""

    @pytest.mark.parametrize('paramstyle,expected', [
        ('qmark', "DELETE FROM t WHERE a = ? AND b = ?"),
        ('format', "DELETE FROM t WHERE a = %s AND b = %s"),
        ('pyformat', "DELETE FROM t WHERE a = %s AND b = %s"),
        ('numeric', "DELETE FROM t WHERE a = :1 AND b = :2"),
        ('numeric_dollar', "DELETE FROM t WHERE a = $1 AND b = $2"),
        ('named', "DELETE FROM t WHERE a = :p1 AND b = :p2"),
    ])
    def test_paramstyles(self, paramstyle, expected):
        assert render_placeholders("DELETE FROM t WHERE a = ? AND b = ?", paramstyle) == expected

    def test_unknown_paramstyle(self):
        with pytest.raises(StatementCompileError):
            render_placeholders("SELECT * FROM t WHERE a = ?", 'telepathy')


class TestCachedStatement:
    """Test binding of cached statements."""

    def test_bind_positional(self):
        key = StatementKey('players', OperationKind.READ, 'id')
        statement = CachedStatement(key, "SELECT * FROM players WHERE id = ?",
                                    "SELECT * FROM players WHERE id = ?", 'qmark', 1)
        assert statement.bind([7]) == (7,)

    def test_bind_named(self):
        key = StatementKey('players', OperationKind.READ, 'id')
        statement = CachedStatement(key, "SELECT * FROM players WHERE id = ?",
                                    "SELECT * FROM players WHERE id = :p1", 'named', 1)
        assert statement.bind([7]) == {'p1': 7}

    def test_bind_count_mismatch(self):
        key = StatementKey('players', OperationKind.CREATE)
        statement = CachedStatement(key, "INSERT INTO players VALUES (?, ?, ?)",
                                    "INSERT INTO players VALUES (?, ?, ?)", 'qmark', 3)
        with pytest.raises(StatementCompileError):
            statement.bind([1, 'a'])

    def test_key_str(self):
        assert str(StatementKey('players', OperationKind.CREATE)) == 'players:create'
        assert str(StatementKey('players', OperationKind.READ, 'id')) == 'players:read:id'


class TestCacheBehaviour:
    """Test get-or-build semantics."""

    def test_built_once_per_key(self, cache):
        descriptor = describe(Player)
        first = cache.get_or_build('players', OperationKind.READ, descriptor, 'id')
        second = cache.get_or_build('players', OperationKind.READ, descriptor, 'id')
        other = cache.get_or_build('players', OperationKind.READ, descriptor, 'name')

        assert first is second
        assert other is not first
        assert cache.builds == 2
        assert len(cache) == 2
        assert StatementKey('players', OperationKind.READ, 'id') in cache

    def test_lookup(self, cache):
        key = StatementKey('players', OperationKind.CREATE)
        assert cache.lookup(key) is None
        statement = cache.get_or_build('players', OperationKind.CREATE, describe(Player))
        assert cache.lookup(key) is statement

    def test_discard_table(self, cache):
        descriptor = describe(Player)
        cache.get_or_build('players', OperationKind.CREATE, descriptor)
        cache.get_or_build('players', OperationKind.READ, descriptor, 'id')
        cache.get_or_build('scores', OperationKind.CREATE, descriptor)

        assert cache.discard_table('players') == 2
        assert len(cache) == 1
        assert StatementKey('players', OperationKind.CREATE) not in cache
        assert StatementKey('scores', OperationKind.CREATE) in cache

    def test_clear(self, cache):
        cache.get_or_build('players', OperationKind.CREATE, describe(Player))
        cache.clear()
        assert len(cache) == 0

    def test_table_lock_is_shared(self, cache):
        assert cache.table_lock('players') is cache.table_lock('players')
        assert cache.table_lock('players') is not cache.table_lock('scores')

    def test_build_waits_for_table_lock_within_deadline(self, cache):
        locked = threading.Event()
        release = threading.Event()

        def hold():
            with cache.table_lock('players'):
                locked.set()
                release.wait(5)

        holder = threading.Thread(target=hold)
        holder.start()
        try:
            assert locked.wait(5)
            with pytest.raises(DeadlineExceededError):
                cache.get_or_build('players', OperationKind.CREATE, describe(Player),
                                   deadline=Deadline(0.05))
        finally:
            release.set()
            holder.join()

        assert len(cache) == 0

    def test_concurrent_builds(self, cache):
        descriptor = describe(Player)
        barrier = threading.Barrier(10)
        built = []

        def worker():
            barrier.wait()
            built.append(cache.get_or_build('players', OperationKind.CREATE, descriptor))

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert cache.builds == 1
        assert all(statement is built[0] for statement in built)
