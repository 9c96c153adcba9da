"""
Background revalidation: deduplicating, concurrency-bounded task queues.

Each cached operation (per prefix) gets one RevalidationQueue. A queue runs at
most `concurrency` refreshes at once and holds at most one pending or running
refresh per cache key. Queues are owned by a RevalidationRegistry, one per
CacheFactory.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]
ErrorObserver = Callable[[str, Exception], None]


class RevalidationQueue:
    """
    FIFO task queue with a concurrency ceiling and dedup by task id.

    Admission is synchronous: `enqueue` never suspends, so two interleaved
    callers can't both admit the same task id.

    Example:
        queue = RevalidationQueue("get_user:default", concurrency=2)
        queue.enqueue("get_user:default:42", lambda: refresh_user(42))
        await queue.join()
    """

    def __init__(
        self,
        name: str,
        concurrency: int = 1,
        on_error: ErrorObserver | None = None,
    ):
        self.name = name
        self.on_error = on_error
        self._pending: deque[tuple[str, TaskFactory]] = deque()
        self._task_ids: set[str] = set()
        self._running: dict[str, asyncio.Task] = {}
        self._concurrency = 1
        self.concurrency = concurrency

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @concurrency.setter
    def concurrency(self, value: int) -> None:
        if value < 1:
            raise ValueError("concurrency must be at least 1")
        grew = value > self._concurrency
        self._concurrency = value
        if grew:
            self._start_ready()

    @property
    def pending(self) -> int:
        """Number of admitted tasks waiting for a slot."""
        return len(self._pending)

    @property
    def running(self) -> int:
        """Number of tasks currently running."""
        return len(self._running)

    def is_active(self, task_id: str) -> bool:
        """Whether a task with this id is pending or running."""
        return task_id in self._task_ids

    def enqueue(self, task_id: str, task: TaskFactory) -> bool:
        """
        Admit a task unless one with the same id is pending or running.

        Args:
            task_id: Dedup identity (the cache key)
            task: Zero-argument callable returning an awaitable

        Returns:
            True if admitted, False if an identical task is already active
        """
        if task_id in self._task_ids:
            logger.debug(f"Revalidation already queued: {task_id}")
            return False

        self._task_ids.add(task_id)
        self._pending.append((task_id, task))
        self._start_ready()
        return True

    def _start_ready(self) -> None:
        while self._pending and len(self._running) < self._concurrency:
            task_id, task = self._pending.popleft()
            self._running[task_id] = asyncio.ensure_future(self._run(task_id, task))

    async def _run(self, task_id: str, task: TaskFactory) -> None:
        try:
            logger.debug(f"Revalidating {task_id}")
            await task()
            logger.debug(f"Background refresh complete: {task_id}")
        except Exception as e:
            logger.error(f"Background refresh failed for {task_id}: {e}")
            if self.on_error:
                try:
                    self.on_error(task_id, e)
                except Exception as err:
                    logger.error(f"Error handler failed: {err}")
        finally:
            self._running.pop(task_id, None)
            self._task_ids.discard(task_id)
            self._start_ready()

    async def join(self) -> None:
        """Wait until nothing is pending or running."""
        while self._running:
            await asyncio.gather(*list(self._running.values()))


class RevalidationRegistry:
    """
    Owns the revalidation queues of one CacheFactory.

    Queues are created lazily by name and live until `shutdown`.
    """

    def __init__(self, on_error: ErrorObserver | None = None):
        self.on_error = on_error
        self._queues: dict[str, RevalidationQueue] = {}

    def get_queue(self, name: str, concurrency: int = 1) -> RevalidationQueue:
        """Get or create the named queue and apply the current concurrency."""
        queue = self._queues.get(name)
        if queue is None:
            queue = RevalidationQueue(name, concurrency, on_error=self.on_error)
            self._queues[name] = queue
            logger.debug(f"Created revalidation queue {name}")
        else:
            queue.concurrency = concurrency
        return queue

    def __contains__(self, name: str) -> bool:
        return name in self._queues

    def __len__(self) -> int:
        return len(self._queues)

    async def join(self) -> None:
        """Wait for every queue to go idle."""
        for queue in list(self._queues.values()):
            await queue.join()

    async def shutdown(self, wait: bool = True) -> None:
        """
        Forget all queues.

        Args:
            wait: Whether to wait for admitted refreshes to finish first.
                Without waiting they still run to completion, untracked.
        """
        if wait:
            await self.join()
        self._queues.clear()
        logger.info("Revalidation registry shut down")
