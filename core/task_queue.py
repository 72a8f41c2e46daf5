# core/task_queue.py
"""Bounded-concurrency queue for best-effort background work.

Prefetches and cache warm-ups are optimizations: their failures must never reach the
user. Instead of floating fire-and-forget tasks, work is submitted here, where it is
tracked, concurrency-limited by a semaphore, and its failures are logged and swallowed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class BackgroundTaskQueue:
    """Run submitted coroutines with at most `max_concurrency` in flight."""

    def __init__(self, *, max_concurrency: int = 3, max_pending: int = 100) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.max_concurrency = max_concurrency
        self.max_pending = max_pending
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False
        self._stats = {
            "submitted": 0,
            "completed": 0,
            "failed": 0,
            "dropped": 0,
        }

    @property
    def pending(self) -> int:
        """Tasks submitted and not yet finished (queued or running)."""
        return len(self._tasks)

    def submit(self, name: str, factory: Callable[[], Awaitable[Any]]) -> bool:
        """Schedule `factory()` to run in the background.

        Returns:
            False when the queue is closed or full and the work was dropped.
        """
        if self._closed:
            self._stats["dropped"] += 1
            logger.debug("Background queue closed; dropping task", task=name)
            return False
        if len(self._tasks) >= self.max_pending:
            self._stats["dropped"] += 1
            logger.warning("Background queue full; dropping task", task=name, pending=len(self._tasks))
            return False

        task = asyncio.get_running_loop().create_task(self._run(name, factory))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._stats["submitted"] += 1
        return True

    async def _run(self, name: str, factory: Callable[[], Awaitable[Any]]) -> None:
        async with self._semaphore:
            try:
                await factory()
            except Exception as exc:
                self._stats["failed"] += 1
                logger.warning("Background task failed", task=name, error=repr(exc))
            else:
                self._stats["completed"] += 1

    async def drain(self) -> None:
        """Wait until every submitted task (including ones submitted meanwhile) finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Stop accepting work and wait for what is already queued."""
        self._closed = True
        await self.drain()

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "pending": len(self._tasks), "max_concurrency": self.max_concurrency}
