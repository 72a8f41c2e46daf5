import asyncio

import pytest

from core.exceptions import BatchItemNotFoundError
from core.request_batcher import RequestBatcher


def _recording_fetch(calls: list[list[str]], missing: frozenset[str] = frozenset()):
    async def fetch_many(keys: list[str]) -> dict[str, dict]:
        calls.append(list(keys))
        return {key: {"id": key} for key in keys if key not in missing}

    return fetch_many


@pytest.mark.asyncio
class TestRequestBatcher:
    async def test_calls_within_window_share_one_fetch(self) -> None:
        batcher = RequestBatcher(batch_delay_ms=10)
        calls: list[list[str]] = []
        fetch_many = _recording_fetch(calls)

        futures = [batcher.batch("issues", key, fetch_many) for key in ("1", "2", "1")]
        results = await asyncio.gather(*futures)

        assert calls == [["1", "2"]]
        assert results == [{"id": "1"}, {"id": "2"}, {"id": "1"}]

    async def test_missing_key_fails_only_its_callers(self) -> None:
        batcher = RequestBatcher(batch_delay_ms=10)
        calls: list[list[str]] = []
        fetch_many = _recording_fetch(calls, missing=frozenset({"2"}))

        futures = [batcher.batch("issues", key, fetch_many) for key in ("1", "2")]
        results = await asyncio.gather(*futures, return_exceptions=True)

        assert results[0] == {"id": "1"}
        assert isinstance(results[1], BatchItemNotFoundError)
        assert isinstance(results[1], KeyError)
        assert results[1].details["item_key"] == "2"
        assert batcher.get_stats()["items_missing"] == 1

    async def test_failed_fetch_rejects_every_caller_with_the_same_error(self) -> None:
        batcher = RequestBatcher(batch_delay_ms=10)
        error = RuntimeError("backend unavailable")

        async def fetch_many(keys: list[str]) -> dict:
            raise error

        futures = [batcher.batch("issues", key, fetch_many) for key in ("1", "2")]
        results = await asyncio.gather(*futures, return_exceptions=True)

        assert results == [error, error]
        assert batcher.get_stats()["batch_failures"] == 1

    async def test_batch_keys_are_independent(self) -> None:
        batcher = RequestBatcher(batch_delay_ms=10)
        calls: list[list[str]] = []
        fetch_many = _recording_fetch(calls)

        await asyncio.gather(batcher.batch("issues", "1", fetch_many), batcher.batch("users", "1", fetch_many))

        assert sorted(calls) == [["1"], ["1"]]
        assert batcher.get_stats()["batches_executed"] == 2

    async def test_each_call_extends_the_window(self) -> None:
        batcher = RequestBatcher(batch_delay_ms=50)
        calls: list[list[str]] = []
        fetch_many = _recording_fetch(calls)

        first = batcher.batch("issues", "1", fetch_many)
        await asyncio.sleep(0.02)
        second = batcher.batch("issues", "2", fetch_many)

        assert batcher.pending_count("issues") == 2
        await asyncio.gather(first, second)
        assert calls == [["1", "2"]]

    async def test_max_delay_caps_the_window(self) -> None:
        batcher = RequestBatcher(batch_delay_ms=10_000, max_delay_ms=10)
        calls: list[list[str]] = []

        result = await asyncio.wait_for(batcher.batch("issues", "1", _recording_fetch(calls)), timeout=1.0)

        assert result == {"id": "1"}

    async def test_flush_executes_open_windows_immediately(self) -> None:
        batcher = RequestBatcher(batch_delay_ms=10_000)
        calls: list[list[str]] = []
        future = batcher.batch("issues", "7", _recording_fetch(calls))

        await batcher.flush()

        assert future.done()
        assert future.result() == {"id": "7"}
        assert batcher.pending_count() == 0
