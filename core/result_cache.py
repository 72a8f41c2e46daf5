# core/result_cache.py
"""
Bounded in-memory result cache with TTL expiry and LRU eviction.

The cache is independent of transport: it only stores values produced by fetch
collaborators, keyed by request fingerprint.

Behaviour:
- Expiry is lazy. Every `get` and `set` first sweeps entries older than their TTL, so no
  stale entry is ever returned.
- The cache is bounded. `set` evicts least-recently-accessed entries until there is room,
  so `len(cache) <= max_size` whenever `set` returns.
- `invalidate(pattern)` removes every key matching the pattern. Matching defaults to
  substring containment; `prefix` and `exact` are available for stricter key schemes.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable
from typing import Any, Literal

import structlog

from core import clock
from core.cache_entry import CacheEntry, CacheMetrics
from utils.json_utils import estimate_json_size

logger = structlog.get_logger(__name__)

PatternMatch = Literal["substring", "prefix", "exact"]

DEFAULT_MAX_SIZE: int = 100
DEFAULT_TTL_MS: int = 5 * 60 * 1000

_MATCHERS: dict[str, Callable[[str, str], bool]] = {
    "substring": lambda key, pattern: pattern in key,
    "prefix": lambda key, pattern: key.startswith(pattern),
    "exact": lambda key, pattern: key == pattern,
}


class ResultCache:
    """Result cache with TTL + LRU eviction."""

    def __init__(
        self,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        pattern_match: PatternMatch = "substring",
    ) -> None:
        if max_size <= 0:
            raise ValueError(f"max_size must be > 0, got {max_size}")
        if pattern_match not in _MATCHERS:
            raise ValueError(f"pattern_match must be one of {sorted(_MATCHERS)}, got {pattern_match!r}")
        self.max_size = max_size
        self.default_ttl_ms = default_ttl_ms
        self.pattern_match = pattern_match
        # Ordered from least to most recently accessed.
        self._data: OrderedDict[str, CacheEntry] = OrderedDict()
        self._metrics = CacheMetrics()

    def _purge_expired(self, now: float) -> int:
        expired_keys = [key for key, entry in self._data.items() if entry.is_expired(now)]
        for key in expired_keys:
            self._data.pop(key, None)
        if expired_keys:
            self._metrics.expirations += len(expired_keys)
            logger.debug("Cache expiry sweep", expired=len(expired_keys))
        return len(expired_keys)

    def _evict_lru(self) -> None:
        while len(self._data) >= self.max_size:
            # pop the least-recently-used key (front of OrderedDict)
            lru_key, _ = self._data.popitem(last=False)
            self._metrics.evictions += 1
            logger.debug("Cache LRU eviction", key=lru_key)

    def get(self, key: str) -> Any | None:
        """Return the cached value for `key`, or None if absent or expired."""
        now = clock.now_ms()
        self._purge_expired(now)

        entry = self._data.get(key)
        if entry is None:
            self._metrics.misses += 1
            return None

        entry.update_access(now)
        self._data.move_to_end(key)
        self._metrics.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        """Insert or refresh `key`.

        Args:
            ttl_ms: Time-to-live for this entry. Defaults to the cache's `default_ttl_ms`.
        """
        now = clock.now_ms()
        self._purge_expired(now)

        # Re-setting a key refreshes it; it must not count against capacity twice.
        self._data.pop(key, None)
        self._evict_lru()

        self._data[key] = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            last_accessed=now,
            ttl_ms=self.default_ttl_ms if ttl_ms is None else ttl_ms,
        )
        self._metrics.sets += 1

    def invalidate(self, pattern: str | None = None) -> int:
        """Remove entries matching `pattern` (all entries when omitted).

        Returns:
            The number of entries removed. Matching nothing is not an error.
        """
        if pattern is None:
            removed = len(self._data)
            self._data.clear()
        else:
            matcher = _MATCHERS[self.pattern_match]
            doomed = [key for key in self._data if matcher(key, pattern)]
            for key in doomed:
                del self._data[key]
            removed = len(doomed)

        self._metrics.invalidations += removed
        logger.debug("Cache invalidated", pattern=pattern, removed=removed)
        return removed

    def clear(self) -> None:
        """Remove every entry and reset the counters."""
        self._data.clear()
        self._metrics.reset()

    def keys(self) -> list[str]:
        """Return the keys of all non-expired entries, least recently used first."""
        self._purge_expired(clock.now_ms())
        return list(self._data)

    def __contains__(self, key: object) -> bool:
        # Freshness check that does not count as an access.
        entry = self._data.get(key) if isinstance(key, str) else None
        return entry is not None and not entry.is_expired(clock.now_ms())

    def __len__(self) -> int:
        return len(self._data)

    def get_stats(self) -> dict[str, Any]:
        """Return hit/miss/eviction counters and current occupancy."""
        return {
            "hits": self._metrics.hits,
            "misses": self._metrics.misses,
            "evictions": self._metrics.evictions,
            "expirations": self._metrics.expirations,
            "invalidations": self._metrics.invalidations,
            "sets": self._metrics.sets,
            "hit_rate": self._metrics.hit_rate,
            "size": len(self._data),
            "max_size": self.max_size,
        }

    def get_memory_usage(self) -> dict[str, Any]:
        """Estimate memory held by cached values from their JSON rendering."""
        estimated = sum(estimate_json_size(entry.value) + len(entry.key) for entry in self._data.values())
        return {
            "entries_count": len(self._data),
            "estimated_size_bytes": estimated,
            "estimated_size_mb": round(estimated / (1024 * 1024), 2),
        }
