import asyncio

import pytest

from core.exceptions import CascadeDetectedError
from core.rate_limiter import RateLimiter
from core.request_deduplicator import RequestDeduplicator


def test_fingerprint_is_independent_of_param_order() -> None:
    first = RequestDeduplicator.fingerprint("issues", {"specialty": "cardio", "limit": 5})
    second = RequestDeduplicator.fingerprint("issues", {"limit": 5, "specialty": "cardio"})

    assert first == second == 'issues:{"limit":5,"specialty":"cardio"}'
    assert RequestDeduplicator.fingerprint("issues", "123") == "issues:123"


@pytest.mark.asyncio
class TestSingleFlight:
    async def test_concurrent_calls_share_one_underlying_request(self) -> None:
        dedup = RequestDeduplicator(RateLimiter())
        release = asyncio.Event()
        calls = 0

        async def fetch() -> dict:
            nonlocal calls
            calls += 1
            await release.wait()
            return {"id": 1}

        futures = [dedup.deduplicate("issues:1", fetch) for _ in range(3)]
        assert dedup.get_stats()["requests_started"] == 1

        release.set()
        results = await asyncio.gather(*futures)

        assert calls == 1
        assert results == [{"id": 1}] * 3
        assert dedup.get_stats()["deduplicated"] == 2

    async def test_failure_reaches_every_waiter_as_the_same_exception(self) -> None:
        dedup = RequestDeduplicator(RateLimiter())

        async def fetch() -> None:
            raise ValueError("network down")

        futures = [dedup.deduplicate("issues:1", fetch) for _ in range(2)]
        results = await asyncio.gather(*futures, return_exceptions=True)

        assert isinstance(results[0], ValueError)
        assert results[0] is results[1]

    async def test_settled_request_is_shared_during_grace_period_only(self) -> None:
        dedup = RequestDeduplicator(RateLimiter(), max_age_ms=20)
        calls = 0

        async def fetch() -> int:
            nonlocal calls
            calls += 1
            return calls

        first = dedup.deduplicate("k", fetch)
        assert await first == 1
        assert await dedup.deduplicate("k", fetch) == 1
        assert calls == 1

        await asyncio.sleep(0.06)

        assert not dedup.is_pending("k")
        assert await dedup.deduplicate("k", fetch) == 2

    async def test_clear_drops_sharing_for_matching_fingerprints(self) -> None:
        dedup = RequestDeduplicator(RateLimiter())
        release = asyncio.Event()

        async def fetch() -> str:
            await release.wait()
            return "ok"

        held = dedup.deduplicate("issues:1", fetch)
        other = dedup.deduplicate("comments:1", fetch)

        assert dedup.clear("issues") == 1
        assert not dedup.is_pending("issues:1")
        assert dedup.is_pending("comments:1")
        fresh = dedup.deduplicate("issues:1", fetch)
        assert fresh is not held

        release.set()
        await asyncio.gather(held, other, fresh)

    async def test_cancelling_one_waiter_leaves_the_shared_request_running(self) -> None:
        dedup = RequestDeduplicator(RateLimiter())
        release = asyncio.Event()
        calls = 0

        async def fetch() -> dict:
            nonlocal calls
            calls += 1
            await release.wait()
            return {"id": 1}

        async def caller() -> dict:
            return await dedup.deduplicate("issues:1", fetch)

        first = asyncio.create_task(caller())
        second = asyncio.create_task(caller())
        await asyncio.sleep(0)

        first.cancel()
        await asyncio.sleep(0)
        release.set()

        assert await second == {"id": 1}
        assert first.cancelled()
        assert calls == 1

    async def test_cancelled_initiator_future_does_not_cancel_later_joiners(self) -> None:
        dedup = RequestDeduplicator(RateLimiter())
        release = asyncio.Event()

        async def fetch() -> str:
            await release.wait()
            return "ok"

        initiator = dedup.deduplicate("issues:1", fetch)
        initiator.cancel()
        joiner = dedup.deduplicate("issues:1", fetch)
        release.set()

        assert await joiner == "ok"
        assert dedup.get_stats()["requests_started"] == 1


@pytest.mark.asyncio
class TestCascadeProtection:
    async def test_repeated_fresh_requests_are_rejected_once_the_storm_exceeds_the_limit(self, fake_clock) -> None:
        dedup = RequestDeduplicator(RateLimiter(), max_age_ms=0, cascade_threshold=3, cascade_window_ms=1000)
        calls = 0

        async def fetch() -> str:
            nonlocal calls
            calls += 1
            return "ok"

        for _ in range(5):
            assert await dedup.deduplicate("issues:1", fetch, endpoint="issues") == "ok"
            await asyncio.sleep(0.01)

        with pytest.raises(CascadeDetectedError) as exc_info:
            await dedup.deduplicate("issues:1", fetch, endpoint="issues")

        assert calls == 5
        assert exc_info.value.details["fingerprint"] == "issues:1"
        stats = dedup.get_stats()
        assert stats["cascades_detected"] == 4
        assert stats["cascade_rejections"] == 1

        fake_clock.advance(1001)
        assert await dedup.deduplicate("issues:1", fetch) == "ok"

    async def test_joining_an_inflight_request_is_never_rejected(self, fake_clock) -> None:
        dedup = RequestDeduplicator(RateLimiter(), cascade_threshold=3)
        release = asyncio.Event()

        async def fetch() -> str:
            await release.wait()
            return "ok"

        futures = [dedup.deduplicate("issues:1", fetch) for _ in range(10)]
        release.set()

        assert await asyncio.gather(*futures) == ["ok"] * 10
        assert dedup.get_stats()["cascades_detected"] == 0

    async def test_call_timings_of_quiet_fingerprints_are_forgotten(self, fake_clock) -> None:
        dedup = RequestDeduplicator(RateLimiter(), max_age_ms=0, timing_window_ms=10_000)

        async def fetch() -> str:
            return "ok"

        await dedup.deduplicate("issues:1", fetch)
        fake_clock.advance(10_001)
        await dedup.deduplicate("issues:2", fetch)

        counts = dedup.get_stats()["fingerprint_counts"]
        assert [entry["fingerprint"] for entry in counts] == ["issues:2"]
