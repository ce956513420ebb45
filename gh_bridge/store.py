"""
Key-value blob persistence for subscriptions, mute lists and user mappings.

Two backends share one interface:
- SQLiteKVStore: a single ``kv`` table via aiosqlite (default)
- RedisKVStore: plain string keys on a Redis server

Both support optional per-key expiry and compare-and-set, which the
subscription store uses to avoid lost updates between concurrent writers.
"""

from __future__ import annotations

import abc
import os
import time

import aiosqlite
import redis.asyncio as redis

from .config import StoreConfig

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      BLOB NOT NULL,
    expires_at REAL
);
"""


class StoreError(Exception):
    """A read or write against the backing store failed."""


class KVStore(abc.ABC):
    """Named byte blobs with optional expiry."""

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abc.abstractmethod
    async def get(self, key: str) -> bytes | None: ...

    @abc.abstractmethod
    async def set(self, key: str, value: bytes, expire_seconds: int | None = None) -> None: ...

    @abc.abstractmethod
    async def delete(self, key: str) -> None: ...

    @abc.abstractmethod
    async def compare_and_set(self, key: str, old: bytes | None, new: bytes) -> bool:
        """Write ``new`` only if the stored value still equals ``old``."""


class SQLiteKVStore(KVStore):
    """Async SQLite key-value store."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        if self._db_path != ":memory:":
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
        try:
            cursor = await self._db.execute(
                "SELECT value, expires_at FROM kv WHERE key = ?", (key,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StoreError(f"could not read {key}: {exc}") from exc
        if row is None:
            return None
        if row["expires_at"] is not None and row["expires_at"] <= time.time():
            return None
        return bytes(row["value"])

    async def set(self, key: str, value: bytes, expire_seconds: int | None = None) -> None:
        assert self._db
        expires_at = time.time() + expire_seconds if expire_seconds else None
        try:
            await self._db.execute(
                """INSERT INTO kv (key, value, expires_at) VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET value=excluded.value,
                   expires_at=excluded.expires_at""",
                (key, value, expires_at),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StoreError(f"could not write {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        assert self._db
        try:
            await self._db.execute("DELETE FROM kv WHERE key = ?", (key,))
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StoreError(f"could not delete {key}: {exc}") from exc

    async def compare_and_set(self, key: str, old: bytes | None, new: bytes) -> bool:
        assert self._db
        try:
            # Expired rows count as absent
            await self._db.execute(
                "DELETE FROM kv WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?",
                (key, time.time()),
            )
            if old is None:
                cursor = await self._db.execute(
                    "INSERT OR IGNORE INTO kv (key, value, expires_at) VALUES (?, ?, NULL)",
                    (key, new),
                )
            else:
                cursor = await self._db.execute(
                    "UPDATE kv SET value = ?, expires_at = NULL WHERE key = ? AND value = ?",
                    (new, key, old),
                )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StoreError(f"could not write {key}: {exc}") from exc
        return cursor.rowcount == 1


class RedisKVStore(KVStore):
    """Redis-backed key-value store."""

    def __init__(self, redis_url: str = "", client: redis.Redis | None = None):
        self._redis_url = redis_url
        self._redis = client

    async def open(self) -> None:
        if self._redis is None:
            self._redis = redis.from_url(self._redis_url, decode_responses=False)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.close()
            self._redis = None

    async def get(self, key: str) -> bytes | None:
        assert self._redis is not None
        try:
            return await self._redis.get(key)
        except redis.RedisError as exc:
            raise StoreError(f"could not read {key}: {exc}") from exc

    async def set(self, key: str, value: bytes, expire_seconds: int | None = None) -> None:
        assert self._redis is not None
        try:
            await self._redis.set(key, value, ex=expire_seconds or None)
        except redis.RedisError as exc:
            raise StoreError(f"could not write {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        assert self._redis is not None
        try:
            await self._redis.delete(key)
        except redis.RedisError as exc:
            raise StoreError(f"could not delete {key}: {exc}") from exc

    async def compare_and_set(self, key: str, old: bytes | None, new: bytes) -> bool:
        assert self._redis is not None
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != old:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, new)
                await pipe.execute()
                return True
        except redis.WatchError:
            return False
        except redis.RedisError as exc:
            raise StoreError(f"could not write {key}: {exc}") from exc


def create_store(config: StoreConfig) -> KVStore:
    if config.backend == "redis":
        return RedisKVStore(config.redis_url)
    return SQLiteKVStore(config.db_path)
