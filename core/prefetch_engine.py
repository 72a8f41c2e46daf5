# core/prefetch_engine.py
"""Derive route-transition prefetch rules from behaviour history and execute them.

Rule derivation:
    Consecutive history entries form transitions `from.route -> to.route`. The probability
    of a transition is its share of all transitions leaving `from.route`. Transitions above
    `probability_threshold` become rules whose target queries come from a static,
    externally configured table of what each route needs. Priority is the probability
    scaled by `priority_scale` and rounded half up; rules are ordered by priority.

Rules are recomputed wholesale, only once the history holds more than `min_samples`
patterns and at most `max_regenerations` times per session.

Prefetching is a heuristic. Wrong or stale rules cost bandwidth, never correctness, so
every prefetch runs on the background queue where failures are logged and swallowed.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

import structlog

from core.behavior_tracker import BehaviorTracker
from core.task_queue import BackgroundTaskQueue
from models.coordination_models import BehaviorPattern, PrefetchRule, QueryKey

logger = structlog.get_logger(__name__)

PrefetchFn = Callable[[QueryKey], Awaitable[Any]]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class PrefetchRuleEngine:
    """Mine behaviour history into prefetch rules and fire background prefetches."""

    def __init__(
        self,
        tracker: BehaviorTracker,
        route_queries: Mapping[str, Sequence[QueryKey]],
        prefetch_fn: PrefetchFn,
        task_queue: BackgroundTaskQueue,
        *,
        min_samples: int = 5,
        probability_threshold: float = 0.3,
        priority_scale: int = 10,
        priority_threshold: int = 7,
        max_regenerations: int = 3,
        regeneration_interval: int = 5,
    ) -> None:
        self._tracker = tracker
        self._route_queries = {route: tuple(queries) for route, queries in route_queries.items()}
        self._prefetch_fn = prefetch_fn
        self._task_queue = task_queue
        self.min_samples = min_samples
        self.probability_threshold = probability_threshold
        self.priority_scale = priority_scale
        self.priority_threshold = priority_threshold
        self.max_regenerations = max_regenerations
        self.regeneration_interval = regeneration_interval

        self._rules: list[PrefetchRule] = []
        self._regenerations = 0
        self._recorded_at_last_regeneration = 0

    @property
    def rules(self) -> list[PrefetchRule]:
        return list(self._rules)

    @property
    def regenerations(self) -> int:
        return self._regenerations

    def generate_rules(self, patterns: Sequence[BehaviorPattern]) -> list[PrefetchRule]:
        """Build rules from `patterns` (oldest first) without touching engine state."""
        transitions: Counter[tuple[str, str]] = Counter()
        outgoing: Counter[str] = Counter()
        for previous, following in zip(patterns, patterns[1:]):
            transitions[(previous.route, following.route)] += 1
            outgoing[previous.route] += 1

        rules = []
        for (from_route, to_route), count in transitions.items():
            if from_route == to_route:
                continue
            probability = count / outgoing[from_route]
            if probability <= self.probability_threshold:
                continue
            queries = self._route_queries.get(to_route)
            if not queries:
                logger.debug("No queries configured for route; skipping rule", route=to_route)
                continue
            rules.append(
                PrefetchRule(
                    trigger_route=from_route,
                    target_route=to_route,
                    target_queries=queries,
                    probability=probability,
                    priority=round_half_up(probability * self.priority_scale),
                )
            )

        rules.sort(key=lambda rule: (rule.priority, rule.probability), reverse=True)
        return rules

    def regenerate(self) -> list[PrefetchRule]:
        """Replace the rule set with one derived from the tracker's current history."""
        self._rules = self.generate_rules(self._tracker.patterns)
        self._regenerations += 1
        self._recorded_at_last_regeneration = self._tracker.recorded_this_session
        logger.info(
            "Prefetch rules regenerated",
            rules=len(self._rules),
            patterns=len(self._tracker.patterns),
            regeneration=self._regenerations,
        )
        return self.rules

    def maybe_regenerate(self) -> bool:
        """Regenerate if the history is large enough and the session budget allows it."""
        if len(self._tracker.patterns) <= self.min_samples:
            return False
        if self._regenerations >= self.max_regenerations:
            return False
        new_patterns = self._tracker.recorded_this_session - self._recorded_at_last_regeneration
        if self._regenerations > 0 and new_patterns < self.regeneration_interval:
            return False
        self.regenerate()
        return True

    def execute_prefetch(self, route: str) -> int:
        """Queue background fetches for high-priority rules triggered by `route`.

        Returns:
            The number of fetches queued.
        """
        queued = 0
        seen: set[str] = set()
        for rule in self._rules:
            if rule.trigger_route != route or rule.priority < self.priority_threshold:
                continue
            for query in rule.target_queries:
                if query.fingerprint in seen:
                    continue
                seen.add(query.fingerprint)
                if self._task_queue.submit(f"prefetch:{query.fingerprint}", lambda q=query: self._prefetch_fn(q)):
                    queued += 1

        if queued:
            logger.debug("Prefetch queued", route=route, queries=queued)
        return queued

    def confidence_for(self, route: str) -> float:
        """Highest rule probability among rules triggered by `route` (0.0 when none)."""
        return max((rule.probability for rule in self._rules if rule.trigger_route == route), default=0.0)
