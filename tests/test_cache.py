"""
tests/test_cache.py
===================
Tests for the dedup TTL stores.

PostgresTTLStore tests mock psycopg.connect; no database is required.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import psycopg
import psycopg.errors
import pytest

from feedreader.clients import cache as cache_module
from feedreader.clients.cache import (
    CACHE_TABLE,
    InMemoryTTLStore,
    PostgresTTLStore,
)
from feedreader.core.errors import CacheError

# =============================================================================
# InMemoryTTLStore
# =============================================================================


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestInMemoryTTLStore:
    def test_get_missing_key(self):
        assert InMemoryTTLStore().get("absent") is None

    def test_put_then_get(self):
        store = InMemoryTTLStore()
        store.put("k", {"totalRecords": 3}, 60)
        assert store.get("k") == {"totalRecords": 3}

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        store = InMemoryTTLStore(clock=clock)
        store.put("k", "v", 60)

        clock.now += 59
        assert store.get("k") == "v"
        clock.now += 1
        assert store.get("k") is None
        assert len(store) == 0

    def test_put_replaces_value_and_ttl(self):
        clock = FakeClock()
        store = InMemoryTTLStore(clock=clock)
        store.put("k", "old", 10)
        clock.now += 5
        store.put("k", "new", 10)
        clock.now += 8

        assert store.get("k") == "new"

    def test_purge_expired(self):
        clock = FakeClock()
        store = InMemoryTTLStore(clock=clock)
        store.put("short", 1, 5)
        store.put("long", 2, 500)
        clock.now += 10

        assert store.purge_expired() == 1
        assert len(store) == 1


# =============================================================================
# PostgresTTLStore
# =============================================================================


def make_mock_connection(cursor: MagicMock) -> MagicMock:
    conn = MagicMock()
    conn.closed = False
    conn.broken = False
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn


def make_cursor(fetchone=None, description=("value",), rowcount=0) -> MagicMock:
    cursor = MagicMock()
    cursor.fetchone.return_value = fetchone
    cursor.description = description
    cursor.rowcount = rowcount
    return cursor


class TestPostgresTTLStore:
    def test_requires_db_url(self):
        with pytest.raises(ValueError):
            PostgresTTLStore("")

    def test_get_returns_live_value(self):
        cursor = make_cursor(fetchone=({"totalRecords": 2},))
        conn = make_mock_connection(cursor)

        with patch.object(cache_module.psycopg, "connect", return_value=conn) as connect:
            store = PostgresTTLStore("postgresql://localhost/feeds")
            value = store.get("msc_voice_a.txt")

        assert value == {"totalRecords": 2}
        sql, params = cursor.execute.call_args.args
        assert CACHE_TABLE in sql
        assert "expires_at > now()" in sql
        assert params == ("msc_voice_a.txt",)
        assert connect.call_args.kwargs["autocommit"] is True

    def test_get_missing_returns_none(self):
        conn = make_mock_connection(make_cursor(fetchone=None))

        with patch.object(cache_module.psycopg, "connect", return_value=conn):
            assert PostgresTTLStore("postgresql://localhost/feeds").get("k") is None

    def test_put_upserts_with_ttl(self):
        cursor = make_cursor(description=None, rowcount=1)
        conn = make_mock_connection(cursor)

        with patch.object(cache_module.psycopg, "connect", return_value=conn):
            PostgresTTLStore("postgresql://localhost/feeds").put("k", {"a": 1}, 172800)

        sql, params = cursor.execute.call_args.args
        assert "ON CONFLICT (cache_key) DO UPDATE" in sql
        assert params[0] == "k"
        assert params[1].obj == {"a": 1}
        assert params[2] == 172800

    def test_connection_reused_between_calls(self):
        conn = make_mock_connection(make_cursor(fetchone=None))

        with patch.object(cache_module.psycopg, "connect", return_value=conn) as connect:
            store = PostgresTTLStore("postgresql://localhost/feeds")
            store.get("a")
            store.get("b")

        assert connect.call_count == 1

    def test_database_error_raised_as_cache_error(self):
        cursor = make_cursor()
        cursor.execute.side_effect = psycopg.errors.UndefinedTable("relation does not exist")
        conn = make_mock_connection(cursor)

        with patch.object(cache_module.psycopg, "connect", return_value=conn):
            store = PostgresTTLStore("postgresql://localhost/feeds")
            with pytest.raises(CacheError) as exc_info:
                store.get("k")

        assert exc_info.value.key == "k"
        assert cursor.execute.call_count == 1

    def test_transient_error_retried_with_fresh_connection(self):
        cursor = make_cursor(fetchone=("v",))
        cursor.execute.side_effect = [psycopg.OperationalError("server closed the connection"), None]
        conn = make_mock_connection(cursor)

        with patch.object(cache_module.psycopg, "connect", return_value=conn) as connect:
            store = PostgresTTLStore("postgresql://localhost/feeds")
            assert store.get("k") == "v"

        assert connect.call_count == 2
        conn.close.assert_called_once()

    def test_ensure_schema_creates_table(self):
        cursor = make_cursor(description=None)
        conn = make_mock_connection(cursor)

        with patch.object(cache_module.psycopg, "connect", return_value=conn):
            PostgresTTLStore("postgresql://localhost/feeds").ensure_schema()

        sql = cursor.execute.call_args.args[0]
        assert f"CREATE TABLE IF NOT EXISTS {CACHE_TABLE}" in sql

    def test_transient_errors_exhaust_retries(self, caplog):
        cursor = make_cursor()
        cursor.execute.side_effect = psycopg.OperationalError("server closed the connection")
        conn = make_mock_connection(cursor)

        with patch.object(cache_module.psycopg, "connect", return_value=conn) as connect:
            store = PostgresTTLStore("postgresql://localhost/feeds")
            with pytest.raises(CacheError) as exc_info:
                store.put("k", {"a": 1}, 60)

        assert exc_info.value.key == "k"
        assert cursor.execute.call_count == 3
        assert connect.call_count == 3
        assert "Circuit breaker exhausted for _execute after 3 attempts" in caplog.text
