import pytest

from core.result_cache import ResultCache


class TestResultCacheBasics:
    def test_get_returns_none_on_miss_and_value_on_hit(self, fake_clock) -> None:
        cache = ResultCache()

        assert cache.get("issues:1") is None
        cache.set("issues:1", {"id": 1})

        assert cache.get("issues:1") == {"id": 1}
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 50.0

    def test_contains_does_not_count_as_access(self, fake_clock) -> None:
        cache = ResultCache()
        cache.set("a", 1)

        assert "a" in cache
        assert "b" not in cache
        assert cache.get_stats()["hits"] == 0

    def test_invalid_construction_arguments_are_rejected(self) -> None:
        with pytest.raises(ValueError):
            ResultCache(max_size=0)
        with pytest.raises(ValueError):
            ResultCache(pattern_match="regex")  # type: ignore[arg-type]


class TestResultCacheExpiry:
    def test_entry_survives_until_ttl_and_expires_after(self, fake_clock) -> None:
        cache = ResultCache(default_ttl_ms=1000)
        cache.set("k", "v")

        fake_clock.advance(1000)
        assert cache.get("k") == "v"

        fake_clock.advance(1)
        assert cache.get("k") is None
        assert cache.get_stats()["expirations"] == 1

    def test_per_entry_ttl_overrides_default(self, fake_clock) -> None:
        cache = ResultCache(default_ttl_ms=60_000)
        cache.set("short", 1, ttl_ms=10)
        cache.set("long", 2)

        fake_clock.advance(11)

        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_set_refreshes_creation_time(self, fake_clock) -> None:
        cache = ResultCache(default_ttl_ms=1000)
        cache.set("k", "old")
        fake_clock.advance(800)
        cache.set("k", "new")
        fake_clock.advance(800)

        assert cache.get("k") == "new"

    def test_keys_sweeps_expired_entries(self, fake_clock) -> None:
        cache = ResultCache(default_ttl_ms=100)
        cache.set("a", 1)
        fake_clock.advance(50)
        cache.set("b", 2)
        fake_clock.advance(60)

        assert cache.keys() == ["b"]


class TestResultCacheBound:
    def test_size_never_exceeds_max_size(self, fake_clock) -> None:
        cache = ResultCache(max_size=3)
        for i in range(10):
            cache.set(f"k{i}", i)
            assert len(cache) <= 3

        assert cache.keys() == ["k7", "k8", "k9"]
        assert cache.get_stats()["evictions"] == 7

    def test_least_recently_accessed_entry_is_evicted(self, fake_clock) -> None:
        cache = ResultCache(max_size=3)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        fake_clock.advance(1)
        cache.get("a")

        cache.set("d", 4)

        assert "b" not in cache
        assert {"a", "c", "d"} == set(cache.keys())

    def test_resetting_existing_key_does_not_evict(self, fake_clock) -> None:
        cache = ResultCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert len(cache) == 2
        assert cache.get("b") == 2
        assert cache.get_stats()["evictions"] == 0


class TestResultCacheInvalidation:
    def test_substring_pattern_removes_matching_keys(self, fake_clock) -> None:
        cache = ResultCache()
        cache.set('archive-rpc:{"offset":0}', [1])
        cache.set('archive-rpc:{"offset":20}', [2])
        cache.set("sidebar-stats:null", {})

        removed = cache.invalidate("archive-rpc")

        assert removed == 2
        assert cache.keys() == ["sidebar-stats:null"]

    def test_invalidate_without_pattern_clears_everything(self, fake_clock) -> None:
        cache = ResultCache()
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.invalidate() == 2
        assert len(cache) == 0

    def test_pattern_matching_nothing_is_not_an_error(self, fake_clock) -> None:
        cache = ResultCache()
        cache.set("a", 1)

        assert cache.invalidate("zzz") == 0
        assert len(cache) == 1

    def test_prefix_mode_ignores_inner_matches(self, fake_clock) -> None:
        cache = ResultCache(pattern_match="prefix")
        cache.set("posts:trending", 1)
        cache.set("user-posts:7", 2)

        assert cache.invalidate("posts") == 1
        assert cache.keys() == ["user-posts:7"]

    def test_exact_mode_only_removes_identical_key(self, fake_clock) -> None:
        cache = ResultCache(pattern_match="exact")
        cache.set("issues:1", 1)
        cache.set("issues:10", 2)

        assert cache.invalidate("issues:1") == 1
        assert cache.keys() == ["issues:10"]


def test_memory_usage_reports_entry_count_and_estimate(fake_clock) -> None:
    cache = ResultCache()
    cache.set("k", {"title": "x" * 100})

    usage = cache.get_memory_usage()

    assert usage["entries_count"] == 1
    assert usage["estimated_size_bytes"] > 100


def test_clear_drops_entries_and_counters(fake_clock) -> None:
    cache = ResultCache()
    cache.set("a", 1)
    cache.get("a")

    cache.clear()

    assert len(cache) == 0
    assert cache.get_stats()["hits"] == 0
