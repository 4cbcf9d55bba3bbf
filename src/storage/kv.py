"""Key-value store collaborator.

The conversation engine keeps all live state in memory; the key-value
store is used only to durably record each thread's metadata and each
conversation's message list plus scalar state, so a restarted process
can rehydrate before serving requests.

Contract:
    get(key) -> optional blob
    set(key, blob)
    delete(key)
    list_keys(prefix) -> set of ids (the key suffixes after ``prefix``)

Pattern: Protocol duck typing with Redis and in-memory implementations
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

import redis.asyncio as redis
from redis.exceptions import RedisError

from src.core.config import Settings
from src.core.exceptions import StorageError
from src.core.logging import get_logger


logger = get_logger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Protocol for the persistence collaborator.

    Allows dependency injection of store implementations for testing
    (InMemoryKeyValueStore) and production (RedisKeyValueStore).
    """

    async def get(self, key: str) -> str | None:
        """Get a blob, or None if the key is absent."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store a blob."""
        ...

    async def delete(self, key: str) -> None:
        """Delete a key (absent keys are ignored)."""
        ...

    async def list_keys(self, prefix: str) -> set[str]:
        """Ids of all keys starting with ``prefix``."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


class InMemoryKeyValueStore:
    """Process-local store. State does not survive a restart."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._data[key] = value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def list_keys(self, prefix: str) -> set[str]:
        async with self._lock:
            return {k[len(prefix):] for k in self._data if k.startswith(prefix)}

    async def close(self) -> None:
        return None

    def __len__(self) -> int:
        return len(self._data)


class RedisKeyValueStore:
    """Redis-backed store.

    Example:
        >>> store = RedisKeyValueStore.from_url("redis://localhost:6379")
        >>> await store.set("thread:abc", "{...}")
    """

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> RedisKeyValueStore:
        return cls(redis.Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(key)
        except RedisError as e:
            raise StorageError(f"Redis GET failed: {e}", key=key) from e
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        try:
            await self._redis.set(key, value)
        except RedisError as e:
            raise StorageError(f"Redis SET failed: {e}", key=key) from e

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as e:
            raise StorageError(f"Redis DEL failed: {e}", key=key) from e

    async def list_keys(self, prefix: str) -> set[str]:
        ids: set[str] = set()
        try:
            async for key in self._redis.scan_iter(match=f"{prefix}*"):
                if isinstance(key, bytes):
                    key = key.decode("utf-8")
                ids.add(key[len(prefix):])
        except RedisError as e:
            raise StorageError(f"Redis SCAN failed: {e}", key=prefix) from e
        return ids

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._redis.aclose()


def create_store(settings: Settings) -> KeyValueStore:
    """Build the configured store backend."""
    if settings.storage_backend == "memory":
        logger.info("Using in-memory store; state will not survive restarts")
        return InMemoryKeyValueStore()
    logger.info("Using Redis store", redis_url=settings.redis_url)
    return RedisKeyValueStore.from_url(settings.redis_url)
