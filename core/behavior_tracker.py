# core/behavior_tracker.py
"""Record navigation history for behaviour-driven prefetching.

Each route change closes the previous visit. Visits longer than `min_dwell_ms` are
appended to the history as `BehaviorPattern`s; the history keeps only the newest
`max_stored_patterns` entries and is persisted through an injected `KVStore` so it
survives across sessions.

Storage failures never reach the caller: they are logged, and tracking continues
in memory for the rest of the session.
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import ValidationError

from core import clock
from core.kv_store import KVStore
from models.coordination_models import BehaviorPattern

logger = structlog.get_logger(__name__)


class BehaviorTracker:
    """Track route visits, their dwell time and the interactions made during them."""

    def __init__(
        self,
        store: KVStore | None = None,
        *,
        storage_key: str = "behavior_patterns",
        max_stored_patterns: int = 50,
        min_dwell_ms: int = 1000,
    ) -> None:
        if max_stored_patterns <= 0:
            raise ValueError(f"max_stored_patterns must be > 0, got {max_stored_patterns}")
        self._store = store
        self.storage_key = storage_key
        self.max_stored_patterns = max_stored_patterns
        self.min_dwell_ms = min_dwell_ms

        self._persistence_enabled = store is not None
        self._patterns: list[BehaviorPattern] = []
        self._current_route: str | None = None
        self._entered_at: float = 0.0
        self._entered_wall: float = 0.0
        self._interactions: list[str] = []
        self.recorded_this_session = 0

        self._load()

    @property
    def patterns(self) -> list[BehaviorPattern]:
        """History, oldest first."""
        return list(self._patterns)

    @property
    def current_route(self) -> str | None:
        return self._current_route

    @property
    def persistence_enabled(self) -> bool:
        return self._persistence_enabled

    def on_route_change(self, route: str) -> BehaviorPattern | None:
        """Close the current visit and start a visit to `route`.

        Returns:
            The pattern recorded for the visit just closed, or None when there was no
            previous route, the route did not change, or the dwell time was too short.
        """
        if route == self._current_route:
            return None

        now = clock.now_ms()
        recorded = self._close_visit(now)

        self._current_route = route
        self._entered_at = now
        self._entered_wall = clock.wall_ms()
        self._interactions = []
        return recorded

    def record_interaction(self, interaction_type: str, detail: Any = None) -> None:
        """Attach an interaction (click, scroll, vote, ...) to the current visit."""
        self._interactions.append(interaction_type if detail is None else f"{interaction_type}:{detail}")

    def end_session(self) -> BehaviorPattern | None:
        """Close the current visit, as if the user navigated away."""
        recorded = self._close_visit(clock.now_ms())
        self._current_route = None
        self._interactions = []
        return recorded

    def clear(self) -> None:
        """Drop the history (and the persisted copy, when persistence is available)."""
        self._patterns = []
        self._persist()

    def _close_visit(self, now: float) -> BehaviorPattern | None:
        if self._current_route is None:
            return None

        dwell_ms = now - self._entered_at
        if dwell_ms <= self.min_dwell_ms:
            logger.debug("Visit too short to record", route=self._current_route, dwell_ms=round(dwell_ms))
            return None

        pattern = BehaviorPattern(
            route=self._current_route,
            timestamp=self._entered_wall,
            duration_ms=dwell_ms,
            interactions=list(self._interactions),
        )
        self._patterns.append(pattern)
        overflow = len(self._patterns) - self.max_stored_patterns
        if overflow > 0:
            del self._patterns[:overflow]
        self.recorded_this_session += 1
        self._persist()
        return pattern

    def _load(self) -> None:
        if not self._persistence_enabled or self._store is None:
            return
        try:
            raw = self._store.load(self.storage_key)
        except Exception as exc:
            self._disable_persistence("load", exc)
            return
        if raw is None:
            return
        if not isinstance(raw, list):
            logger.warning("Stored behaviour history is not a list; ignoring it", key=self.storage_key)
            return

        patterns = []
        for item in raw:
            try:
                patterns.append(BehaviorPattern.model_validate(item))
            except ValidationError:
                logger.debug("Skipping malformed stored behaviour pattern", item=item)
        self._patterns = patterns[-self.max_stored_patterns :]
        logger.info("Loaded behaviour history", patterns=len(self._patterns))

    def _persist(self) -> None:
        if not self._persistence_enabled or self._store is None:
            return
        try:
            self._store.save(self.storage_key, [p.model_dump() for p in self._patterns])
        except Exception as exc:
            self._disable_persistence("save", exc)

    def _disable_persistence(self, operation: str, exc: Exception) -> None:
        self._persistence_enabled = False
        logger.warning(
            "Behaviour history storage failed; tracking in memory for this session",
            operation=operation,
            key=self.storage_key,
            error=str(exc),
        )
