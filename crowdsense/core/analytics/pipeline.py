"""Per-frame analysis pipeline.

This module ties together enhancement, detection, pose fusion, overlap
classification, deduplication and hotspot clustering into a single
frame-to-`AnalysisResult` step.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from crowdsense.core.analytics.dedup import (
    DedupConfig,
    classify_overlaps,
    deduplicate,
    filter_by_confidence,
)
from crowdsense.core.analytics.fusion import CrossModelFusion
from crowdsense.core.analytics.hotspots import (
    HotspotConfig,
    cluster_hotspots,
    coverage_density,
    detect_anomalies,
)
from crowdsense.core.analytics.normalizer import DetectionNormalizer
from crowdsense.core.enhance import enhance_low_light
from crowdsense.core.errors import InvalidSource, ModelUnavailable
from crowdsense.core.types import (
    AnalysisResult,
    Detection,
    Frame,
    RawBoxDetection,
    RawPoseDetection,
)

logger = logging.getLogger(__name__)


class BoxDetector(Protocol):
    """Object detector returning pixel-space `xywh` boxes with class labels."""

    async def detect(
        self, frame: Frame, max_detections: int
    ) -> Sequence[RawBoxDetection | Mapping[str, Any]]:
        """Return raw detections for one frame."""


class PoseEstimator(Protocol):
    """Keypoint pose estimator."""

    async def estimate_poses(
        self, frame: Frame, max_poses: int
    ) -> Sequence[RawPoseDetection | Mapping[str, Any]]:
        """Return raw poses for one frame."""


@dataclass(frozen=True)
class DetectionOptions:
    """Per-call options for image analysis."""

    confidence_threshold: float = 0.35
    enhance_low_light: bool = True
    max_detections: int = 200
    use_multiple_models: bool = True
    min_keypoints: int = 3


@dataclass(frozen=True)
class VideoDetectionOptions(DetectionOptions):
    """Per-call options for video analysis."""

    frame_rate: float = 1.0
    max_duration: float = 30.0
    # None derives the count from frame_rate * sampled duration.
    sample_frames: int | None = 10


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_result(
    people: list[Detection],
    processing_time: float,
    hotspot_config: HotspotConfig | None = None,
) -> AnalysisResult:
    """Assemble an `AnalysisResult`, deriving hotspots, density and anomalies."""

    timestamp = utc_timestamp()
    hotspots = cluster_hotspots(people, hotspot_config)
    density = coverage_density(people)
    return AnalysisResult(
        crowd_count=len(people),
        people=list(people),
        hotspots=hotspots,
        processing_time=processing_time,
        timestamp=timestamp,
        density=density,
        anomalies=detect_anomalies(density, hotspots, timestamp),
    )


def frame_size_of(frame: Frame | None) -> tuple[int, int]:
    """Return (width, height) of a frame or raise `InvalidSource`."""

    if frame is None or getattr(frame, "ndim", 0) < 2:
        raise InvalidSource("frame is missing or not an image array")
    h, w = frame.shape[:2]
    if w <= 0 or h <= 0:
        raise InvalidSource(f"frame has zero size: {w}x{h}")
    return int(w), int(h)


class DetectionPipeline:
    """End-to-end per-frame people analysis.

    Responsibilities:
    - optionally enhance dark frames
    - run the box detector (and the pose estimator when enabled)
    - fuse, classify overlaps, deduplicate and filter detections
    - cluster the survivors into hotspots
    """

    def __init__(
        self,
        detector: BoxDetector,
        pose_estimator: PoseEstimator | None = None,
        fusion: CrossModelFusion | None = None,
        dedup_config: DedupConfig | None = None,
        hotspot_config: HotspotConfig | None = None,
    ) -> None:
        self.detector = detector
        self.pose_estimator = pose_estimator
        self.fusion = fusion or CrossModelFusion()
        self.dedup_config = dedup_config or DedupConfig()
        self.hotspot_config = hotspot_config or HotspotConfig()

    def postprocess(
        self,
        raw_boxes: Sequence[RawBoxDetection | Mapping[str, Any]],
        raw_poses: Sequence[RawPoseDetection | Mapping[str, Any]] | None,
        frame_size: tuple[int, int],
        options: DetectionOptions | None = None,
    ) -> list[Detection]:
        """Turn raw model outputs into the final list of distinct people.

        `raw_poses=None` means the pose estimator did not run; fusion is then
        skipped entirely. An empty pose list leaves the boxes unpenalized.
        """

        opts = options or DetectionOptions()
        normalizer = DetectionNormalizer(opts.confidence_threshold, opts.max_detections)
        people = normalizer.normalize(raw_boxes, frame_size)
        if raw_poses is not None:
            people = self.fusion.fuse(
                people,
                raw_poses,
                frame_size,
                min_keypoints=opts.min_keypoints,
                confidence_threshold=opts.confidence_threshold,
            )
        people = classify_overlaps(people, self.dedup_config)
        people = deduplicate(people, self.dedup_config)
        return filter_by_confidence(people, opts.confidence_threshold, self.dedup_config)

    async def _estimate_poses(
        self, frame: Frame, opts: DetectionOptions
    ) -> Sequence[RawPoseDetection | Mapping[str, Any]] | None:
        if not opts.use_multiple_models or self.pose_estimator is None:
            return None
        try:
            return await self.pose_estimator.estimate_poses(frame, opts.max_detections)
        except ModelUnavailable:
            raise
        except Exception:
            logger.warning("Pose estimation failed; continuing with box detections only", exc_info=True)
            return None

    async def detect_people(
        self, frame: Frame, options: DetectionOptions | None = None
    ) -> list[Detection]:
        """Run the models on `frame` and return the final detections."""

        opts = options or DetectionOptions()
        frame_size = frame_size_of(frame)
        if opts.enhance_low_light:
            frame = enhance_low_light(frame)
        raw_boxes = await self.detector.detect(frame, opts.max_detections)
        raw_poses = await self._estimate_poses(frame, opts)
        return self.postprocess(raw_boxes, raw_poses, frame_size, opts)

    async def analyze_frame(
        self, frame: Frame, options: DetectionOptions | None = None
    ) -> AnalysisResult:
        """Analyze a single frame and return a complete `AnalysisResult`."""

        start = time.perf_counter()
        people = await self.detect_people(frame, options)
        return build_result(people, time.perf_counter() - start, self.hotspot_config)
