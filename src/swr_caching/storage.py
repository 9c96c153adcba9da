"""
Storage backends for caching.

Provides LRUStorage (in-memory), RedisStorage, TableStorage, FallbackStorage and
the CacheStorage protocol. All storage backends implement the CacheStorage
protocol for composability.
"""

from __future__ import annotations

import asyncio
import json
import logging
import pickle
import threading
from collections import OrderedDict
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Protocol, Sequence

try:
    import redis.asyncio as redis
except ImportError:
    redis = None  # type: ignore

from .entry import CacheEntry

logger = logging.getLogger(__name__)


# ============================================================================
# Storage Protocol - Common interface for all backends
# ============================================================================


class CacheStorage(Protocol):
    """
    Protocol for cache storage backends.

    All storage implementations (LRUStorage, RedisStorage, TableStorage,
    FallbackStorage) implement these four coroutines, which is all the
    CacheContainer ever calls.

    Example:
        class MyStorage:
            async def get_item(self, key: str) -> CacheEntry | None: ...
            async def set_item(self, key: str, entry: CacheEntry) -> None: ...
            async def remove_item(self, key: str) -> None: ...
            async def clear(self) -> None: ...
    """

    async def get_item(self, key: str) -> CacheEntry | None:
        """Get stored entry by key. Returns None if absent."""
        ...

    async def set_item(self, key: str, entry: CacheEntry) -> None:
        """Store entry, replacing any existing one."""
        ...

    async def remove_item(self, key: str) -> None:
        """Delete key. No error if absent."""
        ...

    async def clear(self) -> None:
        """Delete every entry held by this storage."""
        ...


def validate_cache_storage(storage: Any) -> bool:
    """
    Validate that an object implements the CacheStorage protocol.
    Useful for debugging custom storage implementations.

    Returns:
        True if valid, False otherwise
    """
    required_methods = ["get_item", "set_item", "remove_item", "clear"]
    return all(
        hasattr(storage, method) and callable(getattr(storage, method))
        for method in required_methods
    )


# ============================================================================
# LRUStorage - In-memory storage with LRU bound
# ============================================================================


class LRUStorage:
    """
    Thread-safe in-memory storage bounded by entry count.

    Least recently used entries are dropped once `max_size` is exceeded.
    Lifetimes are not enforced here; the CacheContainer classifies and evicts.

    Attributes:
        _data: internal entry map, ordered from least to most recently used
        _lock: re-entrant lock to protect concurrent access
    """

    def __init__(self, max_size: int = 10_000):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._data: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()

    async def get_item(self, key: str) -> CacheEntry | None:
        """Return stored entry and mark it as recently used."""
        with self._lock:
            entry = self._data.get(key)
            if entry is not None:
                self._data.move_to_end(key)
            return entry

    async def set_item(self, key: str, entry: CacheEntry) -> None:
        """Store entry, evicting the least recently used ones over max_size."""
        with self._lock:
            self._data[key] = entry
            self._data.move_to_end(key)
            while len(self._data) > self.max_size:
                evicted, _ = self._data.popitem(last=False)
                logger.debug(f"LRU evicted: {evicted}")

    async def remove_item(self, key: str) -> None:
        """Delete key from storage."""
        with self._lock:
            self._data.pop(key, None)

    async def clear(self) -> None:
        """Clear all stored data."""
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data


# ============================================================================
# RedisStorage - Redis-backed storage
# ============================================================================


class RedisStorage:
    """
    Redis-backed storage using the asyncio client.
    Entries are pickled; finite lifetimes are mirrored as Redis key expiry.

    Example:
        import redis.asyncio as redis
        client = redis.Redis(host='localhost', port=6379)
        storage = RedisStorage(client, prefix="app:")
        container = CacheContainer(storage)
    """

    def __init__(self, redis_client: Any, prefix: str = ""):
        """
        Initialize Redis storage.

        Args:
            redis_client: redis.asyncio.Redis client instance
            prefix: Key prefix for namespacing
        """
        if redis is None:
            raise ImportError("redis package required. Install: pip install redis")
        self.client = redis_client
        self.prefix = prefix

    def _make_key(self, key: str) -> str:
        """Add prefix to key."""
        return f"{self.prefix}{key}"

    async def get_item(self, key: str) -> CacheEntry | None:
        """Get entry by key."""
        data = await self.client.get(self._make_key(key))
        if data is None:
            return None
        return pickle.loads(data)

    async def set_item(self, key: str, entry: CacheEntry) -> None:
        """Store entry; Redis drops the key once it leaves its stale window."""
        data = pickle.dumps(entry)
        lifetime = entry.lifetime()
        if lifetime is not None:
            # keep it a little past the boundary so the container sees the expiry
            await self.client.set(self._make_key(key), data, px=int(lifetime) + 1000)
        else:
            await self.client.set(self._make_key(key), data)

    async def remove_item(self, key: str) -> None:
        """Delete key from Redis."""
        await self.client.delete(self._make_key(key))

    async def clear(self) -> None:
        """Delete every key under the prefix (whole db without a prefix)."""
        if not self.prefix:
            await self.client.flushdb()
            return

        batch = []
        async for redis_key in self.client.scan_iter(match=f"{self.prefix}*"):
            batch.append(redis_key)
            if len(batch) >= 500:
                await self.client.delete(*batch)
                batch = []
        if batch:
            await self.client.delete(*batch)


# ============================================================================
# TableStorage - Relational table storage
# ============================================================================


class TableStorage:
    """
    Storage backed by a relational table with `key` and `value` columns.

    The table has to be provisioned outside of this module, e.g.:

        CREATE TABLE cache (key TEXT PRIMARY KEY, value JSONB NOT NULL);

    Queries use `$n` placeholders, so an asyncpg connection works directly:

        storage = TableStorage("cache", conn.fetch)

    Entries are stored as JSON, so cached content must be JSON serializable.
    """

    def __init__(
        self,
        table_name: str,
        raw_query: Callable[..., Awaitable[Sequence[Any] | None]],
    ):
        """
        Args:
            table_name: Table holding the cache rows
            raw_query: Coroutine function `(sql, *params)` returning rows
                (mappings with `key` and `value`) or None
        """
        self.table_name = table_name
        self.raw_query = raw_query

    async def get_item(self, key: str) -> CacheEntry | None:
        rows = await self.raw_query(
            f"SELECT key, value FROM {self.table_name} WHERE key = $1", key
        )
        if not rows:
            return None

        value = rows[0]["value"]
        if isinstance(value, (str, bytes)):
            value = json.loads(value)
        return CacheEntry(**value)

    async def set_item(self, key: str, entry: CacheEntry) -> None:
        await self.raw_query(
            f"INSERT INTO {self.table_name} (key, value) VALUES ($1, $2) "
            f"ON CONFLICT (key) DO UPDATE SET value = $2",
            key,
            json.dumps(asdict(entry)),
        )

    async def remove_item(self, key: str) -> None:
        await self.raw_query(f"DELETE FROM {self.table_name} WHERE key = $1", key)

    async def clear(self) -> None:
        await self.raw_query(f"TRUNCATE TABLE {self.table_name}")


# ============================================================================
# FallbackStorage - Ordered multi-tier storage
# ============================================================================


class FallbackStorage:
    """
    Multi-tier storage: tries each tier in priority order.
    Fast reads from the first tiers, persistence in the later ones.

    A hit in a lower tier is written back to every higher tier. Writes only
    wait for the primary tier; the remaining tiers are written by detached
    tasks whose failures are reported to `on_error`.

    Example:
        import redis.asyncio as redis
        storage = FallbackStorage(
            [LRUStorage(max_size=1000), RedisStorage(redis.Redis())]
        )
    """

    def __init__(
        self,
        storages: Sequence[CacheStorage],
        on_error: Callable[[str, Exception], None] | None = None,
    ):
        """
        Initialize fallback storage.

        Args:
            storages: Tiers in priority order, at least one required
            on_error: Optional observer for failed background writes
        """
        if not storages:
            raise ValueError("at least one storage is required for FallbackStorage")
        self.storages = list(storages)
        self.on_error = on_error
        self._background: set[asyncio.Task] = set()

    async def get_item(self, key: str) -> CacheEntry | None:
        """Get entry, checking tiers in order and backfilling higher tiers."""
        for index, storage in enumerate(self.storages):
            entry = await storage.get_item(key)
            if entry is None:
                continue

            if index > 0:
                logger.debug(f"Fallback hit in tier {index}: {key}")
                await asyncio.gather(
                    *(higher.set_item(key, entry) for higher in self.storages[:index])
                )
            return entry

        return None

    async def set_item(self, key: str, entry: CacheEntry) -> None:
        """Write primary tier, then the others in the background."""
        primary, *others = self.storages
        await primary.set_item(key, entry)

        for storage in others:
            task = asyncio.ensure_future(self._write_detached(storage, key, entry))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _write_detached(
        self, storage: CacheStorage, key: str, entry: CacheEntry
    ) -> None:
        try:
            await storage.set_item(key, entry)
        except Exception as e:
            logger.error(f"Background write failed for {key}: {e}")
            if self.on_error:
                try:
                    self.on_error(key, e)
                except Exception as err:
                    logger.error(f"Error handler failed: {err}")

    async def remove_item(self, key: str) -> None:
        """Delete from every tier."""
        await asyncio.gather(*(storage.remove_item(key) for storage in self.storages))

    async def clear(self) -> None:
        """Clear every tier."""
        await asyncio.gather(*(storage.clear() for storage in self.storages))

    async def join(self) -> None:
        """Wait for outstanding background writes."""
        while self._background:
            await asyncio.gather(*list(self._background))
