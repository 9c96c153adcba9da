"""
Cache entry and its temporal classification.

An entry is FRESH inside its ttl, STALE past the ttl but inside its stale
window, and EXPIRED afterwards. All times are milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EntryState(str, Enum):
    """Temporal state of a stored entry."""

    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


@dataclass
class CacheEntry:
    """Stored cache entry with lifetime metadata."""

    content: Any
    created_at: float  # epoch ms
    ttl: float | None = None
    stale_ttl: float | None = None

    def state(self, now: float) -> EntryState:
        """Classify this entry as of `now`."""
        return classify(self, now)

    def age(self, now: float) -> float:
        """Get age of entry in milliseconds."""
        return now - self.created_at

    def lifetime(self) -> float | None:
        """Milliseconds from creation until EXPIRED, None if it never expires."""
        if self.ttl is None:
            return None
        return max(self.ttl, stale_boundary(self.ttl, self.stale_ttl) or 0)


def stale_boundary(ttl: float | None, stale_ttl: float | None) -> float | None:
    """
    Offset from creation after which a stale entry becomes expired.

    A stale_ttl shorter than ttl is a grace window counted from the ttl
    boundary; otherwise it is absolute from creation. Unset means ttl.
    """
    if stale_ttl is not None and ttl is not None and stale_ttl < ttl:
        return ttl + stale_ttl
    if stale_ttl is None:
        return ttl
    return stale_ttl


def classify(entry: CacheEntry, now: float) -> EntryState:
    """Map an entry to FRESH, STALE or EXPIRED as of `now`."""
    expired_by_ttl = entry.ttl is not None and now > entry.created_at + entry.ttl
    if not expired_by_ttl:
        return EntryState.FRESH

    boundary = stale_boundary(entry.ttl, entry.stale_ttl)
    if boundary is not None and now <= entry.created_at + boundary:
        return EntryState.STALE
    return EntryState.EXPIRED
