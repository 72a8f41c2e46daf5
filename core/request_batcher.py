# core/request_batcher.py
"""Coalesce single-item fetches into one multi-key backend call.

Calls sharing a `batch_key` are collected while a debounce window is open. Every call
re-arms the window, so the batch executes `batch_delay_ms` after the last call of a burst
(bounded by `max_delay_ms` when configured). The batch fetch function then runs once
with the de-duplicated keys, and each caller is settled individually:

- a key present in the result map resolves its callers;
- a key absent from the map fails its callers with `BatchItemNotFoundError`;
- a failing batch fetch fails every caller of that window with the same exception.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from core.exceptions import BatchItemNotFoundError

logger = structlog.get_logger(__name__)

BatchFetchFn = Callable[[list[str]], Awaitable[Mapping[str, Any]]]


@dataclass
class BatchRequest:
    batch_key: str
    item_key: str
    future: asyncio.Future[Any]


@dataclass
class _PendingBatch:
    batch_key: str
    fetch_fn: BatchFetchFn
    opened_at: float
    requests: list[BatchRequest] = field(default_factory=list)
    timer: asyncio.TimerHandle | None = None


class RequestBatcher:
    """Debounced, per-key request batching."""

    def __init__(self, *, batch_delay_ms: int = 50, max_delay_ms: int | None = None) -> None:
        self.batch_delay_ms = batch_delay_ms
        self.max_delay_ms = max_delay_ms
        self._pending: dict[str, _PendingBatch] = {}
        self._inflight: set[asyncio.Task[None]] = set()
        self._stats = {
            "batches_executed": 0,
            "items_requested": 0,
            "items_fetched": 0,
            "items_missing": 0,
            "batch_failures": 0,
        }

    def batch(self, batch_key: str, item_key: str, batch_fetch_fn: BatchFetchFn) -> asyncio.Future[Any]:
        """Queue `item_key` into the open window for `batch_key`.

        Returns:
            A future settled when the window's batch fetch completes.
        """
        loop = asyncio.get_running_loop()
        pending = self._pending.get(batch_key)
        if pending is None:
            pending = _PendingBatch(batch_key=batch_key, fetch_fn=batch_fetch_fn, opened_at=loop.time())
            self._pending[batch_key] = pending
        else:
            pending.fetch_fn = batch_fetch_fn

        future: asyncio.Future[Any] = loop.create_future()
        pending.requests.append(BatchRequest(batch_key=batch_key, item_key=item_key, future=future))
        self._stats["items_requested"] += 1

        if pending.timer is not None:
            pending.timer.cancel()
        delay = self.batch_delay_ms / 1000.0
        if self.max_delay_ms is not None:
            deadline = pending.opened_at + self.max_delay_ms / 1000.0
            delay = max(0.0, min(delay, deadline - loop.time()))
        pending.timer = loop.call_later(delay, self._dispatch, batch_key)
        return future

    def _dispatch(self, batch_key: str) -> None:
        pending = self._pending.pop(batch_key, None)
        if pending is None:
            return
        if pending.timer is not None:
            pending.timer.cancel()
        task = asyncio.ensure_future(self._execute(pending))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _execute(self, pending: _PendingBatch) -> None:
        keys = list(dict.fromkeys(request.item_key for request in pending.requests))
        self._stats["batches_executed"] += 1
        logger.debug(
            "Executing batch",
            batch_key=pending.batch_key,
            keys=len(keys),
            callers=len(pending.requests),
        )

        try:
            results = await pending.fetch_fn(keys)
        except Exception as exc:
            self._stats["batch_failures"] += 1
            logger.warning(
                "Batch fetch failed",
                batch_key=pending.batch_key,
                keys=len(keys),
                error=repr(exc),
            )
            for request in pending.requests:
                if not request.future.done():
                    request.future.set_exception(exc)
            return

        for request in pending.requests:
            if request.future.done():
                continue
            if request.item_key in results:
                request.future.set_result(results[request.item_key])
                self._stats["items_fetched"] += 1
            else:
                self._stats["items_missing"] += 1
                request.future.set_exception(
                    BatchItemNotFoundError(
                        f"Item not found in batch result: {request.item_key}",
                        details={"batch_key": request.batch_key, "item_key": request.item_key},
                    )
                )

    async def flush(self, batch_key: str | None = None) -> None:
        """Execute open windows now (one key, or all) and wait for in-flight batches."""
        keys = [batch_key] if batch_key is not None else list(self._pending)
        for key in keys:
            self._dispatch(key)
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def pending_count(self, batch_key: str | None = None) -> int:
        """Number of callers waiting in open windows."""
        if batch_key is not None:
            pending = self._pending.get(batch_key)
            return len(pending.requests) if pending else 0
        return sum(len(p.requests) for p in self._pending.values())

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "open_windows": len(self._pending), "inflight_batches": len(self._inflight)}
