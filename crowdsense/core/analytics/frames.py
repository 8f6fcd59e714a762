"""Temporal frame selection for video analysis.

A video is analyzed by running the per-frame pipeline at evenly spaced
timestamps and keeping the single most evidentially supported frame. Frames
are processed strictly in order: the frame source's cursor is shared state,
so every seek is awaited before the next read.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import replace
from typing import Protocol

from crowdsense.core.analytics.pipeline import DetectionPipeline, VideoDetectionOptions
from crowdsense.core.errors import AnalysisCancelled, InvalidSource
from crowdsense.core.trackers.simple_tracker import SimpleTracker
from crowdsense.core.types import AnalysisResult
from crowdsense.core.video_sources.base import FrameSource

logger = logging.getLogger(__name__)


class CancelSignal(Protocol):
    """Anything exposing `is_set()`, e.g. `threading.Event` or `asyncio.Event`."""

    def is_set(self) -> bool: ...


def sample_timestamps(
    duration: float | None,
    max_duration: float = 30.0,
    sample_frames: int | None = 10,
    frame_rate: float = 1.0,
) -> list[float]:
    """Return evenly spaced extraction times over `min(duration, max_duration)`.

    Sources that do not report a duration are sampled over `max_duration`.
    """

    span = min(duration, max_duration) if duration and duration > 0 else max_duration
    count = max(1, sample_frames) if sample_frames else max(1, math.ceil(frame_rate * span))
    interval = span / count
    return [i * interval for i in range(count)]


def frame_score(result: AnalysisResult) -> float:
    """Evidence score of a frame: mean confidence times people count."""

    return result.mean_confidence * len(result.people)


def select_best_frame(results: list[AnalysisResult]) -> int:
    """Return the index of the highest-scoring frame (earliest on ties)."""

    if not results:
        raise ValueError("no frames to select from")
    best_index = 0
    best_score = frame_score(results[0])
    for index, result in enumerate(results[1:], start=1):
        score = frame_score(result)
        if score > best_score:
            best_index, best_score = index, score
    return best_index


async def analyze_video(
    pipeline: DetectionPipeline,
    source: FrameSource,
    options: VideoDetectionOptions | None = None,
    cancel: CancelSignal | None = None,
) -> AnalysisResult:
    """Sample `source`, analyze each frame and return the best frame's result.

    Raises:
        InvalidSource: the source has no usable frame size or a frame could
            not be read after seeking.
        AnalysisCancelled: `cancel` was set between two frames.
    """

    opts = options or VideoDetectionOptions()
    w, h = source.frame_size
    if w <= 0 or h <= 0:
        raise InvalidSource(f"frame source has zero size: {w}x{h}")

    start = time.perf_counter()
    timestamps = sample_timestamps(
        source.duration, opts.max_duration, opts.sample_frames, opts.frame_rate
    )
    logger.info("Analyzing video: %d frames, duration=%s", len(timestamps), source.duration)

    tracker = SimpleTracker()
    results: list[AnalysisResult] = []
    try:
        for t in timestamps:
            if cancel is not None and cancel.is_set():
                raise AnalysisCancelled(f"video analysis cancelled before t={t:.2f}s")
            await source.seek(t)
            frame = source.read()
            if frame is None:
                raise InvalidSource(f"could not read frame at t={t:.2f}s")
            result = await pipeline.analyze_frame(frame, opts)
            results.append(replace(result, people=tracker.update(result.people)))
    finally:
        await source.seek(0.0)

    best = results[select_best_frame(results)]
    return replace(best, processing_time=time.perf_counter() - start)
