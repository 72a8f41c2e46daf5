# core/cache_entry.py
"""
Cache entry and metrics models for the result cache.

This module defines the bookkeeping structures the result cache uses to track entry age,
recency and usage, plus the counters it exposes for observability.
"""

from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    """
    A cached value with the metadata needed for TTL expiry and LRU eviction.

    Timestamps are monotonic milliseconds from `core.clock.now_ms`.
    """

    key: str
    value: Any
    created_at: float
    last_accessed: float
    ttl_ms: int
    access_count: int = 1

    def age_ms(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        """An entry is valid while `now - created_at <= ttl_ms`."""
        return self.age_ms(now) > self.ttl_ms

    def update_access(self, now: float) -> None:
        """Update access timestamp and increment access count."""
        self.last_accessed = now
        self.access_count += 1


@dataclass
class CacheMetrics:
    """
    Counters for cache performance monitoring.

    These never influence cache behaviour.
    """

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0
    sets: int = 0

    @property
    def hit_rate(self) -> float:
        """Hit rate as a percentage of all lookups."""
        total_requests = self.hits + self.misses
        return (self.hits / total_requests * 100) if total_requests > 0 else 0.0

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0
        self.invalidations = 0
        self.sets = 0
