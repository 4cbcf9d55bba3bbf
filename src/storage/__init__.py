"""Storage Module - key-value persistence for warm-restart recovery.

Exports:
    - KeyValueStore: protocol consumed by the thread registry
    - RedisKeyValueStore: redis.asyncio backend
    - InMemoryKeyValueStore: process-local backend (development, tests)
    - create_store: backend selection from Settings
"""

from src.storage.kv import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    create_store,
)


__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RedisKeyValueStore",
    "create_store",
]
