"""
Key-value store backends for the subscription blob.

Every backend offers get/set plus compare_and_set, which writes only when the
stored value still equals the value the caller read (None meaning "absent").

Backends:
- MemoryKVStore: process-local dict, for tests and throwaway runs
- SQLiteKVStore: single-table aiosqlite store
- RedisKVStore: redis.asyncio with WATCH/MULTI for compare-and-set
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Protocol

import aiosqlite
import redis.asyncio as redis
import structlog
from redis.exceptions import WatchError

from .config import StoreConfig

log = structlog.get_logger()


class KVStore(Protocol):
    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes) -> None: ...

    async def compare_and_set(
        self, key: str, expected: bytes | None, value: bytes
    ) -> bool: ...


class MemoryKVStore:
    """In-process store; every call completes without yielding to the loop."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = value

    async def compare_and_set(
        self, key: str, expected: bytes | None, value: bytes
    ) -> bool:
        if self._data.get(key) != expected:
            return False
        self._data[key] = value
        return True


_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      BLOB NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class SQLiteKVStore:
    """Async SQLite key-value table."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def get(self, key: str) -> bytes | None:
        assert self._db
        cursor = await self._db.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return bytes(row["value"]) if row else None

    async def set(self, key: str, value: bytes) -> None:
        assert self._db
        now = datetime.now(timezone.utc).isoformat()
        await self._db.execute(
            """INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value=?, updated_at=?""",
            (key, value, now, value, now),
        )
        await self._db.commit()

    async def compare_and_set(
        self, key: str, expected: bytes | None, value: bytes
    ) -> bool:
        assert self._db
        now = datetime.now(timezone.utc).isoformat()
        if expected is None:
            cursor = await self._db.execute(
                "INSERT OR IGNORE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, now),
            )
        else:
            cursor = await self._db.execute(
                "UPDATE kv SET value = ?, updated_at = ? WHERE key = ? AND value = ?",
                (value, now, key, expected),
            )
        await self._db.commit()
        return cursor.rowcount == 1


class RedisKVStore:
    """
    Redis-backed store; values are kept as raw bytes.

    Pass `client` to reuse an existing connection instead of dialing `url`.
    The client must not decode responses.
    """

    def __init__(self, url: str = "", client: redis.Redis | None = None):
        self._url = url
        self._redis: redis.Redis | None = client

    async def open(self) -> None:
        if self._redis is None:
            self._redis = redis.from_url(self._url, decode_responses=False)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def get(self, key: str) -> bytes | None:
        assert self._redis is not None
        return await self._redis.get(key)

    async def set(self, key: str, value: bytes) -> None:
        assert self._redis is not None
        await self._redis.set(key, value)

    async def compare_and_set(
        self, key: str, expected: bytes | None, value: bytes
    ) -> bool:
        assert self._redis is not None
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != expected:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, value)
                await pipe.execute()
                return True
            except WatchError:
                log.debug("store.redis_watch_conflict", key=key)
                return False


def create_store(config: StoreConfig) -> KVStore:
    """Build the backend named in config. The caller opens it."""
    if config.backend == "memory":
        return MemoryKVStore()
    if config.backend == "redis":
        return RedisKVStore(config.redis_url)
    return SQLiteKVStore(config.db_path)
