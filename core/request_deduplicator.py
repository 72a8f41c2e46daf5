# core/request_deduplicator.py
"""Collapse concurrent identical requests into one shared request.

A request is identified by its fingerprint, `endpoint + ":" + stable_serialize(params)`.
The first caller starts the underlying request; every caller arriving while it is pending
(and for `max_age_ms` after it settles) receives a view of the same task, so all of them
observe the identical result or the identical exception. Each caller gets its own shielded
future: cancelling one waiter never cancels the shared request.

Cascade protection:
    Call timestamps are kept per fingerprint. When a new underlying request would be
    started and the fingerprint has already been requested `cascade_threshold` times
    within `cascade_window_ms`, the burst is treated as a request storm (typically a UI
    re-render loop). The rate limiter is consulted with a tightened window and, on denial,
    the new attempt fails with `CascadeDetectedError`. In-flight requests are untouched.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from core import clock
from core.exceptions import CascadeDetectedError, create_error_context
from core.rate_limiter import RateLimiter
from utils.json_utils import stable_serialize

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class PendingRequest:
    fingerprint: str
    task: asyncio.Future[Any]
    started_at: float


class RequestDeduplicator:
    """Single-flight request execution keyed by fingerprint."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        *,
        max_age_ms: int = 5000,
        cascade_threshold: int = 3,
        cascade_window_ms: int = 1000,
        timing_window_ms: int = 10_000,
    ) -> None:
        self._rate_limiter = rate_limiter
        self.max_age_ms = max_age_ms
        self.cascade_threshold = cascade_threshold
        self.cascade_window_ms = cascade_window_ms
        self.timing_window_ms = timing_window_ms

        self._pending: dict[str, PendingRequest] = {}
        self._timings: dict[str, list[float]] = {}
        self._cleanup_handles: dict[str, asyncio.TimerHandle] = {}
        self._stats = {
            "requests_started": 0,
            "deduplicated": 0,
            "cascades_detected": 0,
            "cascade_rejections": 0,
        }

    @staticmethod
    def fingerprint(endpoint: str, params: Any = None) -> str:
        """Build the deduplication key for `endpoint` called with `params`."""
        return f"{endpoint}:{stable_serialize(params)}"

    def deduplicate(
        self,
        fingerprint: str,
        request_fn: Callable[[], Awaitable[T]],
        *,
        endpoint: str | None = None,
    ) -> asyncio.Future[T]:
        """Return a future for the shared request of `fingerprint`, starting `request_fn` if needed.

        Must be called from a running event loop. Calls made in the same synchronous turn
        are handled in call order, so only the first of them invokes `request_fn`.
        """
        loop = asyncio.get_running_loop()
        now = clock.now_ms()
        recent_calls = self._record_timing(fingerprint, now)

        existing = self._pending.get(fingerprint)
        if existing is not None:
            self._stats["deduplicated"] += 1
            logger.debug(
                "Request deduplicated",
                fingerprint=fingerprint,
                age_ms=round(now - existing.started_at, 1),
            )
            return asyncio.shield(existing.task)

        if recent_calls >= self.cascade_threshold:
            self._stats["cascades_detected"] += 1
            logger.warning(
                "Request cascade detected",
                fingerprint=fingerprint,
                endpoint=endpoint,
                calls_in_window=recent_calls,
                window_ms=self.cascade_window_ms,
            )
            admitted = self._rate_limiter.check_rate_limit(
                f"cascade:{fingerprint}",
                self.cascade_threshold,
                self.cascade_window_ms,
            )
            if not admitted:
                self._stats["cascade_rejections"] += 1
                rejected: asyncio.Future[T] = loop.create_future()
                rejected.set_exception(
                    CascadeDetectedError(
                        "Request cascade prevented by rate limiting",
                        details=create_error_context(
                            fingerprint=fingerprint,
                            endpoint=endpoint,
                            calls_in_window=recent_calls,
                        ),
                    )
                )
                return rejected

        task = asyncio.ensure_future(request_fn())
        pending = PendingRequest(fingerprint=fingerprint, task=task, started_at=now)
        self._pending[fingerprint] = pending
        self._stats["requests_started"] += 1
        logger.debug("New request", fingerprint=fingerprint, endpoint=endpoint)

        task.add_done_callback(lambda _f: self._on_settled(pending))
        return asyncio.shield(task)

    def _prune_timings(self, now: float) -> None:
        for fp in list(self._timings):
            timings = [t for t in self._timings[fp] if now - t < self.timing_window_ms]
            if timings:
                self._timings[fp] = timings
            else:
                del self._timings[fp]

    def _record_timing(self, fingerprint: str, now: float) -> int:
        self._prune_timings(now)
        timings = self._timings.setdefault(fingerprint, [])
        timings.append(now)
        return sum(1 for t in timings if now - t < self.cascade_window_ms)

    def _on_settled(self, pending: PendingRequest) -> None:
        task = pending.task
        if not task.cancelled() and task.exception() is not None:
            # Retrieving the exception here also marks it as observed for asyncio.
            logger.debug(
                "Request failed; waiters receive the same error",
                fingerprint=pending.fingerprint,
                error=repr(task.exception()),
            )

        if self._pending.get(pending.fingerprint) is not pending:
            return
        loop = asyncio.get_running_loop()
        self._cleanup_handles[pending.fingerprint] = loop.call_later(
            self.max_age_ms / 1000.0, self._remove, pending
        )

    def _remove(self, pending: PendingRequest) -> None:
        # A clear() followed by a fresh request may have replaced the entry.
        if self._pending.get(pending.fingerprint) is pending:
            del self._pending[pending.fingerprint]
            self._cleanup_handles.pop(pending.fingerprint, None)

    def is_pending(self, fingerprint: str) -> bool:
        """True while a request (or its settle grace window) exists for `fingerprint`."""
        return fingerprint in self._pending

    def clear(self, pattern: str | None = None) -> int:
        """Forget pending entries whose fingerprint contains `pattern` (all when omitted).

        Underlying requests keep running; only the sharing is dropped. Returns the number
        of entries removed.
        """
        if pattern is None:
            doomed = list(self._pending)
            self._timings.clear()
        else:
            doomed = [fp for fp in self._pending if pattern in fp]

        for fp in doomed:
            del self._pending[fp]
            handle = self._cleanup_handles.pop(fp, None)
            if handle is not None:
                handle.cancel()

        logger.debug("Request cache cleared", pattern=pattern, removed=len(doomed))
        return len(doomed)

    def get_stats(self) -> dict[str, Any]:
        """Return active request counts and per-fingerprint call frequencies."""
        now = clock.now_ms()
        self._prune_timings(now)
        fingerprint_counts = [
            {
                "fingerprint": fp,
                "count": len(timings),
                "recent_count": sum(1 for t in timings if now - t < self.cascade_window_ms),
            }
            for fp, timings in self._timings.items()
        ]
        return {
            **self._stats,
            "active_requests": sum(1 for p in self._pending.values() if not p.task.done()),
            "pending_entries": len(self._pending),
            "fingerprint_counts": fingerprint_counts,
        }
