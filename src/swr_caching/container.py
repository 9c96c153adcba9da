"""
Cache container: the read/write contract over a storage backend.

Reads classify the stored entry and evict it once it has expired; writes stamp
the entry with its creation time and lifetimes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from .entry import CacheEntry, EntryState, classify
from .storage import CacheStorage, validate_cache_storage

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class ClassifiedEntry:
    """A stored entry together with its state at read time."""

    entry: CacheEntry
    state: EntryState

    @property
    def content(self) -> Any:
        return self.entry.content

    @property
    def created_at(self) -> float:
        return self.entry.created_at


class CacheContainer:
    """
    Owns reads and writes against one storage backend.

    Example:
        container = CacheContainer(LRUStorage(max_size=1000))
        await container.set_item("user:1", {"id": 1}, ttl=60_000)
        item = await container.get_item("user:1")
        if item is not None:
            print(item.state, item.content)
    """

    def __init__(
        self, storage: CacheStorage, clock: Callable[[], float] | None = None
    ):
        """
        Args:
            storage: Any CacheStorage implementation
            clock: Returns the current time in epoch milliseconds
        """
        if not validate_cache_storage(storage):
            raise TypeError(
                f"{type(storage).__name__} does not implement the CacheStorage protocol"
            )
        self.storage = storage
        self.clock = clock if clock is not None else _now_ms

    async def get_item(self, key: str) -> ClassifiedEntry | None:
        """Return the entry with its state, or None when absent or expired."""
        entry = await self.storage.get_item(key)
        if entry is None:
            return None

        state = classify(entry, self.clock())
        if state is EntryState.EXPIRED:
            logger.debug(f"Evicting expired entry: {key}")
            await self.remove_item(key)
            return None

        return ClassifiedEntry(entry=entry, state=state)

    async def set_item(
        self,
        key: str,
        content: Any,
        *,
        ttl: float | None = None,
        stale_ttl: float | None = None,
    ) -> None:
        """
        Store content under key, replacing any previous entry.

        Args:
            key: Cache key
            content: Value to store
            ttl: Milliseconds until the entry is no longer fresh (None = forever)
            stale_ttl: Milliseconds the entry may be served stale, see
                `entry.stale_boundary`
        """
        for name, value in (("ttl", ttl), ("stale_ttl", stale_ttl)):
            if value is not None and value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")

        if stale_ttl and ttl and stale_ttl < ttl:
            logger.debug(
                f"stale_ttl ({stale_ttl}ms) is less than ttl ({ttl}ms); "
                f"treating it as ttl+stale_ttl ({ttl + stale_ttl}ms)"
            )

        entry = CacheEntry(
            content=content, created_at=self.clock(), ttl=ttl, stale_ttl=stale_ttl
        )
        await self.storage.set_item(key, entry)

    async def clear(self) -> None:
        """Clear the whole storage."""
        await self.storage.clear()
        logger.debug("Cleared cache")

    async def remove_item(self, key: str) -> None:
        """Delete key. No error if absent."""
        await self.storage.remove_item(key)

    unset_key = remove_item
