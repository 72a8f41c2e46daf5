# core/coordinator_service.py
"""
Central service wiring the coordination components together.

One `CoordinatorService` owns one instance of each component and is injected wherever
data is read. A read for a registered resource flows through:

    RequestDeduplicator -> ResultCache -> RateLimiter -> RequestBatcher | fetch_fn -> ResultCache

Route changes feed the BehaviorTracker, whose history periodically regenerates the
PrefetchRuleEngine rules; entering a route fires background prefetches. Change-feed events
and explicit triggers flow into the InvalidationCoordinator.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

import config
from config import CoordinatorSettings
from core.behavior_tracker import BehaviorTracker
from core.change_feed import ChangeFeedBridge, ChangeFeedSource
from core.defaults import (
    DEFAULT_CHANGE_FEED_RULES,
    DEFAULT_INVALIDATION_STRATEGIES,
    DEFAULT_ROUTE_QUERIES,
    DEFAULT_WARMERS,
)
from core.exceptions import CoordinationError, RateLimitExceededError, create_error_context
from core.http_client_service import ResourceHTTPClient
from core.invalidation import InvalidationCoordinator, Warmer
from core.kv_store import InMemoryKVStore, JsonFileKVStore, KVStore
from core.prefetch_engine import PrefetchRuleEngine
from core.rate_limiter import RateLimiter
from core.request_batcher import BatchFetchFn, RequestBatcher
from core.request_deduplicator import RequestDeduplicator
from core.result_cache import ResultCache
from core.task_queue import BackgroundTaskQueue
from models.coordination_models import (
    BehaviorPattern,
    ChangeFeedRule,
    InvalidationStrategy,
    PrefetchRule,
    QueryKey,
)

logger = structlog.get_logger(__name__)

FetchFn = Callable[[Any], Awaitable[Any]]


@dataclass
class ResourceSpec:
    """How to fetch, cache and admit requests for one named resource."""

    name: str
    fetch_fn: FetchFn | None
    batch_fetch_fn: BatchFetchFn | None
    ttl_ms: int | None
    max_requests: int
    window_ms: int

    @property
    def batchable(self) -> bool:
        return self.batch_fetch_fn is not None


def _is_item_key(params: Any) -> bool:
    return isinstance(params, (str, int)) and not isinstance(params, bool)


class CoordinatorService:
    """
    Facade over the data-access coordination components.

    Components are built from `settings` (the process settings by default). Domain tables
    (route queries, invalidation strategies, warmers, change-feed rules) default to the
    review-journal configuration in `core.defaults` and can be replaced per instance.
    """

    def __init__(
        self,
        settings: CoordinatorSettings | None = None,
        *,
        store: KVStore | None = None,
        change_feed: ChangeFeedSource | None = None,
        route_queries: Mapping[str, Sequence[QueryKey]] | None = None,
        strategies: Sequence[InvalidationStrategy] | None = None,
        warmers: Mapping[str, Warmer] | None = None,
        change_feed_rules: Sequence[ChangeFeedRule] | None = None,
    ) -> None:
        cfg = settings or config.settings
        self.config = cfg
        self._resources: dict[str, ResourceSpec] = {}

        if store is None:
            store = JsonFileKVStore(cfg.BEHAVIOR_STORE_DIR) if cfg.BEHAVIOR_STORE_DIR else InMemoryKVStore()

        self.cache = ResultCache(
            max_size=cfg.CACHE_MAX_SIZE,
            default_ttl_ms=cfg.CACHE_TTL_MS,
            pattern_match=cfg.CACHE_PATTERN_MATCH,
        )
        self.rate_limiter = RateLimiter()
        self.deduplicator = RequestDeduplicator(
            self.rate_limiter,
            max_age_ms=cfg.DEDUP_MAX_AGE_MS,
            cascade_threshold=cfg.CASCADE_THRESHOLD,
            cascade_window_ms=cfg.CASCADE_WINDOW_MS,
            timing_window_ms=cfg.REQUEST_TIMING_WINDOW_MS,
        )
        self.batcher = RequestBatcher(batch_delay_ms=cfg.BATCH_DELAY_MS, max_delay_ms=cfg.BATCH_MAX_DELAY_MS)
        self.task_queue = BackgroundTaskQueue(
            max_concurrency=cfg.BACKGROUND_MAX_CONCURRENCY,
            max_pending=cfg.BACKGROUND_MAX_PENDING,
        )
        self.tracker = BehaviorTracker(
            store,
            storage_key=cfg.BEHAVIOR_STORAGE_KEY,
            max_stored_patterns=cfg.MAX_STORED_PATTERNS,
            min_dwell_ms=cfg.MIN_DWELL_MS,
        )
        self.prefetch_engine = PrefetchRuleEngine(
            self.tracker,
            DEFAULT_ROUTE_QUERIES if route_queries is None else route_queries,
            self.prefetch,
            self.task_queue,
            min_samples=cfg.PREFETCH_MIN_SAMPLES,
            probability_threshold=cfg.PREFETCH_PROBABILITY_THRESHOLD,
            priority_scale=cfg.PREFETCH_PRIORITY_SCALE,
            priority_threshold=cfg.PREFETCH_PRIORITY_THRESHOLD,
            max_regenerations=cfg.PREFETCH_MAX_REGENERATIONS,
            regeneration_interval=cfg.PREFETCH_REGENERATION_INTERVAL,
        )
        self.invalidation = InvalidationCoordinator(
            self.cache,
            DEFAULT_INVALIDATION_STRATEGIES if strategies is None else strategies,
            deduplicator=self.deduplicator,
            task_queue=self.task_queue,
            prefetch_fn=self.prefetch,
            warmers=DEFAULT_WARMERS if warmers is None else warmers,
        )
        self.change_feed_bridge: ChangeFeedBridge | None = None
        if change_feed is not None:
            self.change_feed_bridge = ChangeFeedBridge(
                change_feed,
                DEFAULT_CHANGE_FEED_RULES if change_feed_rules is None else change_feed_rules,
                self.invalidate_by_trigger,
            )

    # ------------------------------------------------------------------
    # Resources and the read pipeline
    # ------------------------------------------------------------------

    def register_resource(
        self,
        name: str,
        fetch_fn: FetchFn | None = None,
        batch_fetch_fn: BatchFetchFn | None = None,
        ttl_ms: int | None = None,
        max_requests: int | None = None,
        window_ms: int | None = None,
    ) -> ResourceSpec:
        """Register how `name` is fetched. At least one fetch function is required."""
        if fetch_fn is None and batch_fetch_fn is None:
            raise ValueError(f"Resource {name!r} needs fetch_fn or batch_fetch_fn")
        spec = ResourceSpec(
            name=name,
            fetch_fn=fetch_fn,
            batch_fetch_fn=batch_fetch_fn,
            ttl_ms=ttl_ms,
            max_requests=self.config.RATE_LIMIT_MAX_REQUESTS if max_requests is None else max_requests,
            window_ms=self.config.RATE_LIMIT_WINDOW_MS if window_ms is None else window_ms,
        )
        self._resources[name] = spec
        logger.info("Resource registered", resource=name, batchable=spec.batchable, ttl_ms=ttl_ms)
        return spec

    def register_http_resource(
        self,
        name: str,
        client: ResourceHTTPClient,
        *,
        batchable: bool = False,
        ttl_ms: int | None = None,
        max_requests: int | None = None,
        window_ms: int | None = None,
    ) -> ResourceSpec:
        """Register `name` as served by `client`; batchable resources also get `fetch_many`."""
        return self.register_resource(
            name,
            client.fetch_fn(name),
            client.batch_fetch_fn(name) if batchable else None,
            ttl_ms=ttl_ms,
            max_requests=max_requests,
            window_ms=window_ms,
        )

    def is_registered(self, resource: str) -> bool:
        return resource in self._resources

    def fetch(self, resource: str, params: Any = None) -> asyncio.Future[Any]:
        """Read `resource` with `params` through the full coordination pipeline.

        Raises:
            CoordinationError: If `resource` was never registered.
        """
        spec = self._resources.get(resource)
        if spec is None:
            raise CoordinationError(f"Unknown resource: {resource}", details={"resource": resource})
        fingerprint = self.deduplicator.fingerprint(resource, params)
        return self.deduplicator.deduplicate(
            fingerprint,
            lambda: self._load(spec, fingerprint, params),
            endpoint=resource,
        )

    async def _load(self, spec: ResourceSpec, fingerprint: str, params: Any) -> Any:
        cached = self.cache.get(fingerprint)
        if cached is not None:
            return cached

        if not self.rate_limiter.check_rate_limit(spec.name, spec.max_requests, spec.window_ms):
            raise RateLimitExceededError(
                f"Rate limit exceeded for {spec.name}",
                details=create_error_context(
                    resource=spec.name,
                    max_requests=spec.max_requests,
                    window_ms=spec.window_ms,
                ),
            )

        if spec.batch_fetch_fn is not None and _is_item_key(params):
            value = await self.batcher.batch(spec.name, str(params), spec.batch_fetch_fn)
        elif spec.fetch_fn is not None:
            value = await spec.fetch_fn(params)
        else:
            raise CoordinationError(
                f"Resource {spec.name} only supports single item keys",
                details={"resource": spec.name, "params": params},
            )

        self.cache.set(fingerprint, value, spec.ttl_ms)
        return value

    async def prefetch(self, query: QueryKey) -> None:
        """Background fetch used by prefetch rules and cache warmers."""
        if query.resource not in self._resources:
            logger.debug("Skipping prefetch for unregistered resource", resource=query.resource)
            return
        await self.fetch(query.resource, query.params)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        return self.cache.get(key)

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        self.cache.set(key, value, ttl_ms)

    def invalidate(self, pattern: str | None = None) -> int:
        """Purge cached entries matching `pattern` and stop sharing their settled requests."""
        self.deduplicator.clear(pattern)
        return self.cache.invalidate(pattern)

    def get_stats(self) -> dict[str, Any]:
        return self.cache.get_stats()

    def get_memory_usage(self) -> dict[str, Any]:
        return self.cache.get_memory_usage()

    def get_coordination_stats(self) -> dict[str, Any]:
        """Stats from every component, keyed by component."""
        return {
            "cache": self.cache.get_stats(),
            "deduplication": self.deduplicator.get_stats(),
            "batching": self.batcher.get_stats(),
            "rate_limits": self.rate_limiter.get_status(),
            "invalidation": self.invalidation.get_stats(),
            "background": self.task_queue.get_stats(),
            "prefetch": {
                "rules": len(self.prefetch_engine.rules),
                "regenerations": self.prefetch_engine.regenerations,
            },
            "change_feed": self.change_feed_bridge.get_stats() if self.change_feed_bridge else None,
        }

    # ------------------------------------------------------------------
    # Deduplication, batching, admission
    # ------------------------------------------------------------------

    def deduplicate(
        self,
        fingerprint: str,
        request_fn: Callable[[], Awaitable[Any]],
        *,
        endpoint: str | None = None,
    ) -> asyncio.Future[Any]:
        return self.deduplicator.deduplicate(fingerprint, request_fn, endpoint=endpoint)

    def batch(self, batch_key: str, item_key: str, batch_fetch_fn: BatchFetchFn) -> asyncio.Future[Any]:
        return self.batcher.batch(batch_key, item_key, batch_fetch_fn)

    def check_rate_limit(self, endpoint: str, max_requests: int, window_ms: int) -> bool:
        return self.rate_limiter.check_rate_limit(endpoint, max_requests, window_ms)

    # ------------------------------------------------------------------
    # Behaviour and prefetching
    # ------------------------------------------------------------------

    def record_interaction(self, interaction_type: str, detail: Any = None) -> None:
        self.tracker.record_interaction(interaction_type, detail)

    def on_route_change(self, route: str) -> int:
        """Record the navigation and prefetch for the route being entered.

        Returns:
            The number of prefetches queued.
        """
        if route == self.tracker.current_route:
            return 0
        self.tracker.on_route_change(route)
        return self.prefetch_for_route(route)

    def prefetch_for_route(self, route: str) -> int:
        self.prefetch_engine.maybe_regenerate()
        return self.prefetch_engine.execute_prefetch(route)

    async def track_routes(self, route_signal: AsyncIterator[str]) -> None:
        """Follow a stream of current-route values until it is exhausted."""
        async for route in route_signal:
            self.on_route_change(route)

    def behavior_patterns(self) -> list[BehaviorPattern]:
        return self.tracker.patterns

    def prefetch_rules(self) -> list[PrefetchRule]:
        return self.prefetch_engine.rules

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_by_trigger(self, trigger: str, payload: Mapping[str, Any] | None = None) -> None:
        self.invalidation.invalidate_by_trigger(trigger, payload)

    def warm_related_cache(self, trigger: str, payload: Mapping[str, Any] | None = None) -> int:
        return self.invalidation.warm_related_cache(trigger, payload)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.change_feed_bridge is not None:
            self.change_feed_bridge.start()
        logger.info("Coordinator service started", resources=sorted(self._resources))

    async def aclose(self) -> None:
        """Stop the change feed, settle open batches and wait for background work."""
        if self.change_feed_bridge is not None:
            self.change_feed_bridge.stop()
        await self.batcher.flush()
        self.invalidation.close()
        self.tracker.end_session()
        await self.task_queue.aclose()
        logger.info("Coordinator service closed", stats=self.get_stats())
