"""Memoization of completed analyses.

Results are keyed by `MediaKey(kind, media_id)` and kept for the lifetime of
the process (no eviction). Concurrent requests for the same key are
single-flighted behind a per-key `asyncio.Lock`, so a source is analyzed at
most once; a failed computation stores nothing and the next caller retries.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from crowdsense.core.types import AnalysisResult, MediaKey

logger = logging.getLogger(__name__)


class ResultCache:
    """In-process get-or-compute map of `AnalysisResult` objects."""

    def __init__(self) -> None:
        self._results: dict[MediaKey, AnalysisResult] = {}
        self._locks: dict[MediaKey, asyncio.Lock] = {}
        self._waiters: dict[MediaKey, int] = {}

    def __len__(self) -> int:
        return len(self._results)

    def __contains__(self, key: object) -> bool:
        return key in self._results

    def get(self, key: MediaKey) -> AnalysisResult | None:
        return self._results.get(key)

    def invalidate(self, key: MediaKey) -> bool:
        """Drop a cached result. Returns whether one was present."""

        return self._results.pop(key, None) is not None

    def clear(self) -> None:
        self._results.clear()

    async def get_or_compute(
        self, key: MediaKey, compute: Callable[[], Awaitable[AnalysisResult]]
    ) -> AnalysisResult:
        """Return the cached result for `key`, computing it once on a miss."""

        cached = self._results.get(key)
        if cached is not None:
            logger.debug("Result cache hit: %s", key)
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                cached = self._results.get(key)
                if cached is not None:
                    logger.debug("Result cache hit after wait: %s", key)
                    return cached
                logger.debug("Result cache miss: %s", key)
                result = await compute()
                self._results[key] = result
                return result
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]
