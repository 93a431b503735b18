"""
Feed Reader - Dedup TTL Stores

Key-value stores with per-entry expiry backing the Duplicate Guard.

- PostgresTTLStore: shared across processes, table ops.feed_file_cache.
  Expired rows are ignored on read and replaced on write.
- InMemoryTTLStore: process-local, for single-process deployments and tests.

Both are safe to share between feed worker threads.

Usage:
    from feedreader.clients.cache import PostgresTTLStore

    store = PostgresTTLStore(settings.DATABASE_URL)
    store.ensure_schema()
    store.put("msc_voice_CDR_0001.txt", {"totalRecords": 10}, ttl_seconds=172800)
    store.get("msc_voice_CDR_0001.txt")
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from typing import Any, Callable, TypeVar

import psycopg
import psycopg.errors
from psycopg.types.json import Jsonb
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from feedreader.core.errors import CacheError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_TABLE = "ops.feed_file_cache"

SCHEMA_SQL = f"""
CREATE SCHEMA IF NOT EXISTS ops;
CREATE TABLE IF NOT EXISTS {CACHE_TABLE} (
    cache_key   text PRIMARY KEY,
    value       jsonb NOT NULL,
    expires_at  timestamptz NOT NULL,
    updated_at  timestamptz NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS feed_file_cache_expires_at_idx ON {CACHE_TABLE} (expires_at);
"""

GET_SQL = f"SELECT value FROM {CACHE_TABLE} WHERE cache_key = %s AND expires_at > now()"

PUT_SQL = f"""
INSERT INTO {CACHE_TABLE} (cache_key, value, expires_at)
VALUES (%s, %s, now() + make_interval(secs => %s))
ON CONFLICT (cache_key) DO UPDATE
SET value = EXCLUDED.value,
    expires_at = EXCLUDED.expires_at,
    updated_at = now()
"""

PURGE_SQL = f"DELETE FROM {CACHE_TABLE} WHERE expires_at <= now()"

TRANSIENT_EXCEPTIONS = (
    psycopg.OperationalError,
    psycopg.errors.AdminShutdown,
    psycopg.errors.CannotConnectNow,
    psycopg.errors.QueryCanceled,
    TimeoutError,
    ConnectionError,
)


def with_circuit_breaker(
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 5.0,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry a store operation on transient database errors with exponential backoff.

    After the last attempt the original exception is re-raised.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            @retry(
                retry=retry_if_exception_type(TRANSIENT_EXCEPTIONS),
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            )
            def inner() -> T:
                return func(*args, **kwargs)

            try:
                return inner()
            except TRANSIENT_EXCEPTIONS:
                logger.error(
                    "Circuit breaker exhausted for %s after %d attempts", func.__name__, max_attempts
                )
                raise

        return wrapper

    return decorator


class PostgresTTLStore:
    """TTL store on a Postgres table, shared by every feed worker and process."""

    def __init__(self, db_url: str, connect_timeout: int = 10) -> None:
        if not db_url:
            raise ValueError("Database URL required: set DATABASE_URL")
        self._db_url = db_url
        self._connect_timeout = connect_timeout
        self._conn: psycopg.Connection | None = None
        self._lock = threading.Lock()

    def _connection(self) -> psycopg.Connection:
        if self._conn is None or self._conn.closed or self._conn.broken:
            self._conn = psycopg.connect(
                self._db_url,
                autocommit=True,
                connect_timeout=self._connect_timeout,
                application_name="feedreader_cache",
            )
        return self._conn

    def _reset(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except psycopg.Error:
                pass
        self._conn = None

    @with_circuit_breaker()
    def _execute(self, sql: str, params: tuple[Any, ...] | None = None) -> Any:
        with self._lock:
            try:
                with self._connection().cursor() as cur:
                    cur.execute(sql, params)
                    if cur.description is None:
                        return cur.rowcount
                    return cur.fetchone()
            except psycopg.OperationalError:
                self._reset()
                raise

    def ensure_schema(self) -> None:
        """Create the cache table if it does not exist."""
        try:
            self._execute(SCHEMA_SQL)
        except psycopg.Error as e:
            raise CacheError(CACHE_TABLE, str(e)) from e
        logger.info("Ensured cache table %s", CACHE_TABLE)

    def get(self, key: str) -> Any | None:
        try:
            row = self._execute(GET_SQL, (key,))
        except psycopg.Error as e:
            raise CacheError(key, str(e)) from e
        return row[0] if row else None

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self._execute(PUT_SQL, (key, Jsonb(value), ttl_seconds))
        except psycopg.Error as e:
            raise CacheError(key, str(e)) from e

    def purge_expired(self) -> int:
        """Delete expired rows; returns the number removed."""
        try:
            removed = self._execute(PURGE_SQL)
        except psycopg.Error as e:
            raise CacheError(CACHE_TABLE, str(e)) from e
        logger.info("Purged %d expired cache entries", removed)
        return removed

    def close(self) -> None:
        with self._lock:
            self._reset()


class InMemoryTTLStore:
    """Process-local TTL store."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def close(self) -> None:
        with self._lock:
            self._entries.clear()
