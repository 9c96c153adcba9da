"""
Cache decorators for async function result caching.

Provides:
- CacheFactory.with_cache / CacheFactory.cached: stale-while-revalidate wrapper
- cache_method: method decorator with per-key single flight
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from .config import CacheOptions
from .container import CacheContainer
from .entry import EntryState
from .hashing import hash_arguments
from .revalidation import ErrorObserver, RevalidationRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _invoke(operation: Callable[..., Any], args: tuple, kwargs: dict) -> Any:
    """Call operation and await its result if it is awaitable."""
    result = operation(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


# ============================================================================
# CacheFactory - Stale-While-Revalidate wrapper
# ============================================================================


class CacheFactory:
    """
    Turns async operations into cached operations sharing one CacheContainer.

    Fresh entries are returned as is. Stale entries are returned immediately
    while a background refresh is queued (at most one per key). Missing or
    expired entries are recomputed before returning.

    Every factory owns its revalidation queues; `shutdown()` (or leaving the
    `async with` block) drains and drops them.

    Example:
        factory = CacheFactory(CacheContainer(LRUStorage()))

        @factory.cached(operation_id="get_user", ttl=60_000, stale_ttl=30_000)
        async def get_user(user_id: int):
            return await db.fetch_user(user_id)

        # Without the decorator
        cached_fetch = factory.with_cache(fetch, operation_id="fetch", ttl=1000)
    """

    def __init__(
        self,
        container: CacheContainer,
        on_background_error: ErrorObserver | None = None,
    ):
        """
        Args:
            container: Cache container every wrapped operation reads and writes
            on_background_error: Optional observer `(cache_key, exc)` for failed
                background refreshes
        """
        self.container = container
        self.registry = RevalidationRegistry(on_error=on_background_error)

    def with_cache(
        self,
        operation: Callable[..., Awaitable[T]],
        options: CacheOptions | None = None,
        *,
        operation_id: str | None = None,
        **kwargs: Any,
    ) -> Callable[..., Awaitable[T]]:
        """
        Wrap an operation with caching.

        Args:
            operation: Async callable (plain callables are awaited if needed)
            options: CacheOptions instance; keyword options are used otherwise
            operation_id: Stable identity of the operation, part of every key.
                Generated when omitted, so keys won't survive a restart.
            **kwargs: CacheOptions fields: prefix, calculate_key, should_store,
                ttl (cache_time_ms), stale_ttl (stale_time_ms),
                revalidation_concurrency

        Returns:
            Async wrapper; its `options` attribute is read on every call.
        """
        if options is None:
            options = CacheOptions.from_kwargs(**kwargs)
        elif kwargs:
            raise TypeError("Pass either options or keyword options, not both")

        if operation_id is None:
            operation_id = uuid.uuid4().hex
            logger.debug(
                f"No operation_id for {getattr(operation, '__name__', operation)!r}; "
                f"using {operation_id}, cache keys won't survive a restart"
            )

        container = self.container
        registry = self.registry

        @functools.wraps(operation)
        async def wrapper(*args: Any, **call_kwargs: Any) -> T:
            opts: CacheOptions = wrapper.options  # type: ignore[attr-defined]
            opts.validate()
            prefix = opts.prefix or "default"
            queue_name = f"{operation_id}:{prefix}"
            if opts.calculate_key is not None:
                argument_key = opts.calculate_key(*args, **call_kwargs)
            else:
                argument_key = hash_arguments(args, call_kwargs)
            cache_key = f"{queue_name}:{argument_key}"

            if not opts.caching_enabled:
                return await _invoke(operation, args, call_kwargs)

            queue = registry.get_queue(queue_name, opts.revalidation_concurrency)
            ttl, stale_ttl = opts.storage_windows()

            async def refresh() -> T:
                result = await _invoke(operation, args, call_kwargs)
                if opts.should_store is None or opts.should_store(result):
                    await container.set_item(
                        cache_key, result, ttl=ttl, stale_ttl=stale_ttl
                    )
                return result

            cached = await container.get_item(cache_key)

            if cached is not None:
                if cached.state is EntryState.STALE:
                    logger.debug(
                        f"Cache HIT (stale): {cache_key}, refreshing in background"
                    )
                    queue.enqueue(cache_key, refresh)
                else:
                    logger.debug(f"Cache HIT (fresh): {cache_key}")
                return cached.content

            logger.debug(f"Cache MISS: {cache_key}")
            return await refresh()

        wrapper.options = options  # type: ignore[attr-defined]
        wrapper.operation_id = operation_id  # type: ignore[attr-defined]
        wrapper._container = container  # type: ignore[attr-defined]
        return wrapper

    def cached(
        self,
        options: CacheOptions | None = None,
        *,
        operation_id: str | None = None,
        **kwargs: Any,
    ) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
        """
        Decorator form of `with_cache`.

        Example:
            @factory.cached(operation_id="search", prefix="v2", ttl=5_000)
            async def search(query: str):
                return await api.search(query)
        """

        def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
            return self.with_cache(func, options, operation_id=operation_id, **kwargs)

        return decorator

    async def join(self) -> None:
        """Wait for all queued background refreshes to finish."""
        await self.registry.join()

    async def shutdown(self, wait: bool = True) -> None:
        """
        Drop the revalidation queues of this factory.

        Args:
            wait: Whether to wait for running refreshes to complete
        """
        await self.registry.shutdown(wait)

    async def __aenter__(self) -> CacheFactory:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()


def with_cache_factory(
    container: CacheContainer, on_background_error: ErrorObserver | None = None
) -> Callable[..., Callable[..., Awaitable[Any]]]:
    """Return the `with_cache` function of a new CacheFactory for `container`."""
    return CacheFactory(container, on_background_error).with_cache


# ============================================================================
# cache_method - Method decorator
# ============================================================================


@dataclass(frozen=True)
class MethodCall:
    """Call details handed to a method decorator's `calculate_key`."""

    class_name: str
    method_name: str
    args: tuple
    kwargs: dict


def _json_method_key(call: MethodCall) -> str:
    arguments: list[Any] = list(call.args)
    if call.kwargs:
        arguments.append(call.kwargs)
    return (
        f"{call.class_name}:{call.method_name}:"
        f"{json.dumps(arguments, sort_keys=True, default=repr)}"
    )


def cache_method(
    container: CacheContainer,
    *,
    ttl: float | None = None,
    stale_ttl: float | None = None,
    calculate_key: Callable[[MethodCall], str] | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Cache an async method's results in `container`.

    Concurrent calls with the same key share a single load. Any entry that
    has not expired (fresh or stale) is returned without refreshing.

    Args:
        container: Cache container to read and write
        ttl: Freshness window in ms (None = forever)
        stale_ttl: Staleness window in ms
        calculate_key: Optional `(MethodCall) -> str`; defaults to
            "ClassName:method:<json args>"

    Example:
        class UserRepository:
            @cache_method(container, ttl=60_000)
            async def get(self, user_id: int):
                return await self.db.fetch_user(user_id)
    """
    key_fn = calculate_key if calculate_key is not None else _json_method_key

    def decorator(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        in_flight: dict[str, asyncio.Future] = {}
        # keyed by the defining class: subclass instances share its entries
        owner = method.__qualname__.rsplit(".", 2)[-2:]
        defining_class = (
            owner[0] if len(owner) == 2 and owner[0] != "<locals>" else None
        )

        async def load(instance: Any, args: tuple, kwargs: dict, cache_key: str) -> T:
            entry = await container.get_item(cache_key)
            if entry is not None:
                logger.debug(f"Cache HIT {cache_key}")
                return entry.content

            logger.debug(f"Cache MISS {cache_key}")
            result = await _invoke(method, (instance, *args), kwargs)
            await container.set_item(cache_key, result, ttl=ttl, stale_ttl=stale_ttl)
            return result

        @functools.wraps(method)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
            call = MethodCall(
                class_name=defining_class or type(self).__name__,
                method_name=method.__name__,
                args=args,
                kwargs=kwargs,
            )
            cache_key = key_fn(call)

            future = in_flight.get(cache_key)
            if future is not None:
                logger.debug(f"Method is already enqueued {cache_key}")
            else:
                future = asyncio.ensure_future(load(self, args, kwargs, cache_key))
                in_flight[cache_key] = future
                future.add_done_callback(lambda _: in_flight.pop(cache_key, None))

            return await asyncio.shield(future)

        wrapper._container = container  # type: ignore[attr-defined]
        logger.debug(f"Added caching for method {method.__qualname__}")
        return wrapper

    return decorator
