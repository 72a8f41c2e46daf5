import asyncio

import pytest

from core.task_queue import BackgroundTaskQueue


@pytest.mark.asyncio
class TestBackgroundTaskQueue:
    async def test_concurrency_is_limited(self) -> None:
        queue = BackgroundTaskQueue(max_concurrency=2)
        active = 0
        peak = 0

        async def work() -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        for i in range(5):
            assert queue.submit(f"job-{i}", work)
        await queue.drain()

        assert peak == 2
        assert queue.get_stats()["completed"] == 5
        assert queue.pending == 0

    async def test_failures_are_logged_and_swallowed(self) -> None:
        queue = BackgroundTaskQueue()

        async def boom() -> None:
            raise RuntimeError("prefetch failed")

        queue.submit("boom", boom)
        await queue.drain()

        stats = queue.get_stats()
        assert stats["failed"] == 1
        assert stats["completed"] == 0

    async def test_full_queue_drops_new_work(self) -> None:
        queue = BackgroundTaskQueue(max_pending=1)
        release = asyncio.Event()

        async def wait() -> None:
            await release.wait()

        assert queue.submit("first", wait) is True
        assert queue.submit("second", wait) is False
        assert queue.get_stats()["dropped"] == 1

        release.set()
        await queue.drain()

    async def test_closed_queue_accepts_no_work(self) -> None:
        queue = BackgroundTaskQueue()
        await queue.aclose()

        async def work() -> None:
            return None

        assert queue.submit("late", work) is False
