import asyncio

import pytest

from crowdsense.core.cache import ResultCache
from crowdsense.core.types import AnalysisResult, MediaKey, MediaKind

KEY = MediaKey(kind=MediaKind.IMAGE, media_id="m1")


def _result() -> AnalysisResult:
    return AnalysisResult(crowd_count=0, people=[], hotspots=[], processing_time=0.0, timestamp="t")


def test_concurrent_requests_compute_once():
    cache = ResultCache()
    calls = 0

    async def compute():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return _result()

    async def main():
        return await asyncio.gather(*(cache.get_or_compute(KEY, compute) for _ in range(5)))

    results = asyncio.run(main())
    assert calls == 1
    assert all(r is results[0] for r in results)
    assert KEY in cache
    assert len(cache) == 1
    assert cache._locks == {}
    assert cache._waiters == {}


def test_failures_are_not_cached():
    cache = ResultCache()
    attempts = []

    async def compute():
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("transient")
        return _result()

    with pytest.raises(RuntimeError):
        asyncio.run(cache.get_or_compute(KEY, compute))
    assert KEY not in cache
    result = asyncio.run(cache.get_or_compute(KEY, compute))
    assert cache.get(KEY) is result
    assert len(attempts) == 2


def test_invalidate_and_clear():
    cache = ResultCache()

    async def compute():
        return _result()

    asyncio.run(cache.get_or_compute(KEY, compute))
    other = MediaKey(kind=MediaKind.VIDEO, media_id="m1")
    asyncio.run(cache.get_or_compute(other, compute))
    assert len(cache) == 2
    assert cache.invalidate(KEY) is True
    assert cache.invalidate(KEY) is False
    cache.clear()
    assert len(cache) == 0


def test_media_key_is_composite():
    assert MediaKey(MediaKind.IMAGE, "a") != MediaKey(MediaKind.VIDEO, "a")
    assert str(MediaKey(MediaKind.LIVE, "cam-1")) == "live:cam-1"
