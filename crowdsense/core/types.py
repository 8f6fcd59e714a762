"""Shared type definitions used across the analysis pipeline.

This module intentionally centralizes small, stable types (boxes, keypoints,
detections, hotspots and analysis results) so normalizer/fusion/clustering code
can stay strongly typed. Raw model outputs are validated into
`RawBoxDetection` / `RawPoseDetection` at the boundary and never passed around
as untyped mappings.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

Frame = np.ndarray

# Pixel-space box as produced by the object detector: (x, y, width, height).
PixelBox = tuple[float, float, float, float]
Point = tuple[float, float]


def _finite(value: Any, name: str) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(out):
        raise ValueError(f"{name} must be finite, got {value!r}")
    return out


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box normalized to [0, 1] relative to the frame."""

    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class Keypoint:
    """Pose keypoint in pixel coordinates of the analyzed frame."""

    x: float
    y: float
    score: float
    name: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Keypoint:
        """Validate a raw keypoint mapping (`x`, `y`, `score`, optional `name`)."""

        score = data.get("score")
        return cls(
            x=_finite(data.get("x"), "keypoint.x"),
            y=_finite(data.get("y"), "keypoint.y"),
            # Pose estimators may omit the score for keypoints they did not see.
            score=0.0 if score is None else _finite(score, "keypoint.score"),
            name=str(data.get("name") or ""),
        )


@dataclass(frozen=True)
class RawBoxDetection:
    """One object-detector output: class label, score and pixel `xywh` box."""

    label: str
    score: float
    box_px: PixelBox

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RawBoxDetection:
        """Validate a raw `{class, score, bbox}` mapping."""

        box = data.get("box_px", data.get("bbox"))
        if not isinstance(box, Sequence) or len(box) != 4:
            raise ValueError(f"box must be a 4-sequence [x, y, w, h], got {box!r}")
        x, y, w, h = (_finite(v, "box") for v in box)
        if w < 0 or h < 0:
            raise ValueError("box width/height must be >= 0")
        return cls(
            label=str(data.get("class", data.get("label", ""))),
            score=_finite(data.get("score"), "score"),
            box_px=(x, y, w, h),
        )


@dataclass(frozen=True)
class RawPoseDetection:
    """One pose-estimator output: overall score and its keypoints."""

    score: float | None
    keypoints: tuple[Keypoint, ...]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RawPoseDetection:
        """Validate a raw `{score, keypoints: [...]}` mapping."""

        raw_kps = data.get("keypoints") or []
        score = data.get("score")
        return cls(
            score=None if score is None else _finite(score, "pose.score"),
            keypoints=tuple(Keypoint.from_mapping(kp) for kp in raw_kps),
        )


@dataclass(frozen=True)
class Detection:
    """A single inferred person.

    Instances are immutable; pipeline stages that adjust confidence, keypoints
    or the overlap flag produce replaced copies (`dataclasses.replace`).
    """

    id: str
    bounding_box: BoundingBox
    confidence: float
    keypoints: tuple[Keypoint, ...] | None = None
    is_fully_visible: bool = False
    is_overlapping: bool = False
    track_id: str | None = None


@dataclass(frozen=True)
class Hotspot:
    """Circular crowd-density region; radius is a normalized length."""

    x: float
    y: float
    radius: float
    intensity: float


@dataclass(frozen=True)
class Anomaly:
    """Crowd anomaly flagged from the density of an analysis."""

    type: str
    confidence: float
    location: str
    timestamp: str


@dataclass
class AnalysisResult:
    """Outcome of one analysis run. Owned by the caller once returned."""

    crowd_count: int
    people: list[Detection]
    hotspots: list[Hotspot]
    processing_time: float
    timestamp: str
    density: int = 0
    anomalies: list[Anomaly] = field(default_factory=list)

    @property
    def mean_confidence(self) -> float:
        if not self.people:
            return 0.0
        return sum(p.confidence for p in self.people) / len(self.people)


class MediaKind(str, enum.Enum):
    """Kinds of media the service knows how to analyze."""

    IMAGE = "image"
    VIDEO = "video"
    LIVE = "live"


@dataclass(frozen=True)
class MediaKey:
    """Composite cache key for a piece of media."""

    kind: MediaKind
    media_id: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.media_id}"
