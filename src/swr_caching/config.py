"""
Caching options and logging switches.

Options are plain keyword arguments on the decorators; `CacheOptions` resolves
their aliases and validates them. The SWR wrapper validates its options again
on every call.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Callable

DEBUG_ENV_VAR = "SWR_CACHING_DEBUG"

_ALIASES = {
    "cache_time_ms": "ttl",
    "stale_time_ms": "stale_ttl",
}


@dataclass
class CacheOptions:
    """
    Per-operation caching options.

    Attributes:
        prefix: Namespace for cache keys and the revalidation queue
        calculate_key: Optional `(*args, **kwargs) -> str` replacing argument hashing
        should_store: Optional predicate deciding whether a fresh result is stored
        ttl: Freshness window in ms, 0/None disables this dimension
        stale_ttl: Staleness window in ms, 0/None disables this dimension
        revalidation_concurrency: Concurrent background refreshes per queue
    """

    prefix: str = "default"
    calculate_key: Callable[..., str] | None = None
    should_store: Callable[[Any], bool] | None = None
    ttl: float | None = None
    stale_ttl: float | None = None
    revalidation_concurrency: int = 1

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise ValueError for negative windows or a concurrency below 1."""
        for name in ("ttl", "stale_ttl"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")
        if self.revalidation_concurrency < 1:
            raise ValueError("revalidation_concurrency must be at least 1")

    @classmethod
    def from_kwargs(cls, **kwargs: Any) -> CacheOptions:
        """Build options from keyword arguments, accepting `*_time_ms` aliases."""
        known = {f.name for f in fields(cls)}
        resolved: dict[str, Any] = {}
        for name, value in kwargs.items():
            target = _ALIASES.get(name, name)
            if target not in known:
                raise TypeError(f"Unknown caching option: {name}")
            if target in resolved and resolved[target] != value:
                raise TypeError(f"Option {target} given twice")
            resolved[target] = value
        return cls(**resolved)

    @property
    def caching_enabled(self) -> bool:
        """False when both the fresh and the stale window are 0/None."""
        return bool(self.ttl) or bool(self.stale_ttl)

    def storage_windows(self) -> tuple[float, float | None]:
        """(ttl, stale_ttl) as written to storage; a disabled ttl becomes 0."""
        return self.ttl or 0, self.stale_ttl or None


def debug_enabled() -> bool:
    """Whether the debug logging environment switch is on."""
    return os.environ.get(DEBUG_ENV_VAR, "").lower() in ("1", "true", "yes", "on")


def enable_debug_logging(level: int = logging.DEBUG) -> logging.Logger:
    """Attach a stream handler to the package logger."""
    package_logger = logging.getLogger("swr_caching")
    if not any(
        isinstance(handler, logging.StreamHandler)
        and not isinstance(handler, logging.FileHandler)
        for handler in package_logger.handlers
    ):
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )
        package_logger.addHandler(handler)
    package_logger.setLevel(level)
    return package_logger
