"""
Async result caching with stale-while-revalidate.

Expose the cache container, storage backends, the SWR wrapper factory and the
method decorator under `swr_caching`.
"""

import logging

from .config import CacheOptions, debug_enabled, enable_debug_logging
from .entry import CacheEntry, EntryState, classify, stale_boundary
from .storage import (
    LRUStorage,
    RedisStorage,
    TableStorage,
    FallbackStorage,
    CacheStorage,
    validate_cache_storage,
)
from .container import CacheContainer, ClassifiedEntry
from .hashing import hash_arguments
from .revalidation import RevalidationQueue, RevalidationRegistry
from .decorators import (
    CacheFactory,
    MethodCall,
    cache_method,
    with_cache_factory,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

if debug_enabled():
    enable_debug_logging()

__all__ = [
    "CacheOptions",
    "enable_debug_logging",
    "CacheEntry",
    "EntryState",
    "classify",
    "stale_boundary",
    "LRUStorage",
    "RedisStorage",
    "TableStorage",
    "FallbackStorage",
    "CacheStorage",
    "validate_cache_storage",
    "CacheContainer",
    "ClassifiedEntry",
    "hash_arguments",
    "RevalidationQueue",
    "RevalidationRegistry",
    "CacheFactory",
    "MethodCall",
    "cache_method",
    "with_cache_factory",
]
