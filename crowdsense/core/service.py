"""Public analysis surface used by the API and CLI.

`CrowdAnalysisService` exposes the three entry points the rest of the
application calls:

- `analyze_image(frame, options)`
- `analyze_video(source, options, cancel)`
- `analyze_media(media_id, media_kind, source_key)`: cache-aware; serves
  seeded synthetic results in demo mode or when no media resolver is wired
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from crowdsense.core.analytics.frames import CancelSignal, analyze_video
from crowdsense.core.analytics.pipeline import (
    DetectionOptions,
    DetectionPipeline,
    VideoDetectionOptions,
)
from crowdsense.core.cache import ResultCache
from crowdsense.core.errors import ModelUnavailable
from crowdsense.core.synthetic import synthesize_result
from crowdsense.core.types import AnalysisResult, Frame, MediaKey, MediaKind
from crowdsense.core.video_sources.base import FrameSource

logger = logging.getLogger(__name__)

# Resolves a stored media id to an openable frame source.
MediaResolver = Callable[[str, MediaKind], FrameSource]


class CrowdAnalysisService:
    """Runs analyses and memoizes per-media results."""

    def __init__(
        self,
        pipeline: DetectionPipeline | None = None,
        cache: ResultCache | None = None,
        resolver: MediaResolver | None = None,
        image_options: DetectionOptions | None = None,
        video_options: VideoDetectionOptions | None = None,
        demo_mode: bool = True,
    ) -> None:
        self.pipeline = pipeline
        self.cache = cache or ResultCache()
        self.resolver = resolver
        self.image_options = image_options or DetectionOptions()
        self.video_options = video_options or VideoDetectionOptions()
        self.demo_mode = demo_mode

    def _require_pipeline(self) -> DetectionPipeline:
        if self.pipeline is None:
            raise ModelUnavailable("no detection pipeline is configured")
        return self.pipeline

    async def analyze_image(
        self, frame: Frame, options: DetectionOptions | None = None
    ) -> AnalysisResult:
        """Analyze a single image buffer."""

        pipeline = self._require_pipeline()
        return await pipeline.analyze_frame(frame, options or self.image_options)

    async def analyze_video(
        self,
        source: FrameSource,
        options: VideoDetectionOptions | None = None,
        cancel: CancelSignal | None = None,
    ) -> AnalysisResult:
        """Analyze sampled frames of a video and return the best one."""

        pipeline = self._require_pipeline()
        return await analyze_video(pipeline, source, options or self.video_options, cancel)

    @property
    def uses_models(self) -> bool:
        return not self.demo_mode and self.pipeline is not None and self.resolver is not None

    async def _compute_media(self, media_id: str, kind: MediaKind, source_key: str) -> AnalysisResult:
        resolver = self.resolver
        if not self.uses_models or resolver is None:
            logger.debug("Synthesizing %s analysis for %s", kind.value, media_id)
            pipeline = self.pipeline
            if pipeline is None:
                return synthesize_result(source_key, kind)
            return synthesize_result(
                source_key, kind, pipeline.dedup_config, pipeline.hotspot_config
            )

        with resolver(media_id, kind) as source:
            if kind is MediaKind.VIDEO:
                return await self.analyze_video(source)
            # Live feeds are analyzed on the frame currently exposed by the source.
            return await self.analyze_image(source.read())

    async def analyze_media(
        self, media_id: str, media_kind: MediaKind | str, source_key: str | None = None
    ) -> AnalysisResult:
        """Return the (cached) analysis of a stored or live media item."""

        kind = MediaKind(media_kind)
        key = MediaKey(kind=kind, media_id=media_id)
        seed_key = source_key if source_key is not None else media_id
        return await self.cache.get_or_compute(
            key, lambda: self._compute_media(media_id, kind, seed_key)
        )
