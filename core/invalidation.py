# core/invalidation.py
"""
Trigger-driven cache invalidation and related-data warming.

Domain events (a published issue, a new comment, a user logging in) are named triggers.
Each `InvalidationStrategy` maps triggers to cache-key patterns:

- immediate strategies purge their patterns synchronously, so a `get` issued after
  `invalidate_by_trigger` returns never sees a purged entry;
- batched strategies collect patterns in a pending set owned by that strategy and purge
  them once, `batch_delay_ms` after the latest trigger of a burst.

Warmers map a trigger plus its payload to queries worth fetching ahead of time; those are
queued as best-effort background work.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from core.request_deduplicator import RequestDeduplicator
from core.result_cache import ResultCache
from core.task_queue import BackgroundTaskQueue
from models.coordination_models import InvalidationStrategy, QueryKey

logger = structlog.get_logger(__name__)

Warmer = Callable[[Mapping[str, Any]], Sequence[QueryKey]]
PrefetchFn = Callable[[QueryKey], Awaitable[Any]]


@dataclass
class _PendingInvalidation:
    strategy: InvalidationStrategy
    patterns: set[str] = field(default_factory=set)
    timer: asyncio.TimerHandle | None = None


class InvalidationCoordinator:
    """Apply invalidation strategies to a `ResultCache` and warm related queries."""

    def __init__(
        self,
        cache: ResultCache,
        strategies: Sequence[InvalidationStrategy],
        *,
        deduplicator: RequestDeduplicator | None = None,
        task_queue: BackgroundTaskQueue | None = None,
        prefetch_fn: PrefetchFn | None = None,
        warmers: Mapping[str, Warmer] | None = None,
    ) -> None:
        self._cache = cache
        self._deduplicator = deduplicator
        self._strategies = list(strategies)
        self._task_queue = task_queue
        self._prefetch_fn = prefetch_fn
        self._warmers = dict(warmers or {})
        # Keyed by strategy index so two batched strategies never share a window.
        self._pending: dict[int, _PendingInvalidation] = {}
        self._stats = {
            "triggers_received": 0,
            "unmatched_triggers": 0,
            "immediate_purges": 0,
            "batched_purges": 0,
            "entries_removed": 0,
            "warm_requests_queued": 0,
            "warmer_failures": 0,
        }

    @property
    def strategies(self) -> list[InvalidationStrategy]:
        return list(self._strategies)

    @property
    def pending_patterns(self) -> set[str]:
        """Patterns waiting for a batched purge, across all strategies."""
        patterns: set[str] = set()
        for pending in self._pending.values():
            patterns |= pending.patterns
        return patterns

    def invalidate_by_trigger(self, trigger: str, payload: Mapping[str, Any] | None = None) -> None:
        """Apply every strategy whose triggers include `trigger`."""
        self._stats["triggers_received"] += 1
        matched = False

        for index, strategy in enumerate(self._strategies):
            if trigger not in strategy.triggers:
                continue
            matched = True
            if strategy.immediate:
                removed = sum(self._purge(pattern) for pattern in strategy.affected_query_patterns)
                self._stats["immediate_purges"] += 1
                self._stats["entries_removed"] += removed
                logger.debug(
                    "Immediate invalidation",
                    trigger=trigger,
                    patterns=strategy.affected_query_patterns,
                    removed=removed,
                )
            else:
                self._schedule(index, strategy)

        if not matched:
            self._stats["unmatched_triggers"] += 1
            logger.debug("No invalidation strategy for trigger", trigger=trigger)

    def _purge(self, pattern: str) -> int:
        if self._deduplicator is not None:
            # Settled requests are shared for a grace period; they must not outlive the purge.
            self._deduplicator.clear(pattern)
        return self._cache.invalidate(pattern)

    def _schedule(self, index: int, strategy: InvalidationStrategy) -> None:
        loop = asyncio.get_running_loop()
        pending = self._pending.get(index)
        if pending is None:
            pending = _PendingInvalidation(strategy=strategy)
            self._pending[index] = pending
        pending.patterns.update(strategy.affected_query_patterns)

        if pending.timer is not None:
            pending.timer.cancel()
        pending.timer = loop.call_later(strategy.batch_delay_ms / 1000.0, self._flush_strategy, index)

    def _flush_strategy(self, index: int) -> int:
        pending = self._pending.pop(index, None)
        if pending is None:
            return 0
        if pending.timer is not None:
            pending.timer.cancel()

        removed = sum(self._purge(pattern) for pattern in sorted(pending.patterns))
        self._stats["batched_purges"] += 1
        self._stats["entries_removed"] += removed
        logger.debug(
            "Batched invalidation",
            triggers=pending.strategy.triggers,
            patterns=sorted(pending.patterns),
            removed=removed,
        )
        return removed

    def flush_pending(self) -> int:
        """Run every pending batched purge now. Returns the number of entries removed."""
        return sum(self._flush_strategy(index) for index in list(self._pending))

    def close(self) -> None:
        """Cancel pending batched purges without applying them."""
        for pending in self._pending.values():
            if pending.timer is not None:
                pending.timer.cancel()
        if self._pending:
            logger.debug("Discarding pending invalidations", patterns=sorted(self.pending_patterns))
        self._pending.clear()

    def warm_related_cache(self, trigger: str, payload: Mapping[str, Any] | None = None) -> int:
        """Queue background fetches for queries related to `trigger`.

        Returns:
            The number of fetches queued (0 for unknown triggers, payloads a warmer
            has nothing to derive from, or a warmer that raised).
        """
        warmer = self._warmers.get(trigger)
        if warmer is None:
            return 0
        try:
            queries = list(warmer(payload or {}))
        except Exception as exc:
            self._stats["warmer_failures"] += 1
            logger.warning("Cache warmer failed", trigger=trigger, error=repr(exc))
            return 0
        if not queries:
            return 0
        if self._task_queue is None or self._prefetch_fn is None:
            logger.debug("Cache warming unavailable; no background queue", trigger=trigger)
            return 0

        prefetch_fn = self._prefetch_fn
        queued = 0
        for query in queries:
            if self._task_queue.submit(f"warm:{query.fingerprint}", lambda q=query: prefetch_fn(q)):
                queued += 1
        self._stats["warm_requests_queued"] += queued
        logger.debug("Cache warming queued", trigger=trigger, queries=queued)
        return queued

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "pending_windows": len(self._pending),
            "pending_patterns": sorted(self.pending_patterns),
        }
