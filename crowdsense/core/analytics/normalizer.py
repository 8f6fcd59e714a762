"""Conversion of raw model outputs into candidate `Detection` records.

Raw outputs arrive either as typed `RawBoxDetection` / `RawPoseDetection`
records (from the in-process YOLO adapters) or as JSON-like mappings (from
tests, fixtures or remote model services). Mappings are validated here and
never travel further down the pipeline.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from crowdsense.core.geometry import (
    clip_pixel_box,
    is_fully_visible,
    normalize_pixel_box,
    validate_box,
)
from crowdsense.core.types import Detection, RawBoxDetection, RawPoseDetection

logger = logging.getLogger(__name__)

PERSON_LABEL = "person"
# Candidates enter fusion at a looser threshold than the final acceptance one.
INTAKE_FACTOR = 0.8

_detection_ids = itertools.count(1)


def next_detection_id(source: str) -> str:
    """Return a process-unique detection id, e.g. `box-person-12`."""

    return f"{source}-person-{next(_detection_ids)}"


def coerce_boxes(items: Iterable[RawBoxDetection | Mapping[str, Any]]) -> list[RawBoxDetection]:
    """Validate raw detector outputs into `RawBoxDetection` records."""

    return [
        item if isinstance(item, RawBoxDetection) else RawBoxDetection.from_mapping(item)
        for item in items
    ]


def coerce_poses(items: Iterable[RawPoseDetection | Mapping[str, Any]]) -> list[RawPoseDetection]:
    """Validate raw pose-estimator outputs into `RawPoseDetection` records."""

    return [
        item if isinstance(item, RawPoseDetection) else RawPoseDetection.from_mapping(item)
        for item in items
    ]


class DetectionNormalizer:
    """Filter person boxes and convert them to normalized candidates."""

    def __init__(self, confidence_threshold: float = 0.35, max_detections: int = 200) -> None:
        self.confidence_threshold = confidence_threshold
        self.max_detections = max_detections

    @property
    def intake_threshold(self) -> float:
        return self.confidence_threshold * INTAKE_FACTOR

    def normalize(
        self,
        raw_boxes: Iterable[RawBoxDetection | Mapping[str, Any]],
        frame_size: tuple[int, int],
    ) -> list[Detection]:
        """Return candidate detections for one frame.

        Args:
            raw_boxes: Object-detector outputs with pixel `xywh` boxes.
            frame_size: (width, height) of the analyzed frame in pixels.

        Returns:
            Candidates in detector order. Confidence is not final yet: fusion
            and deduplication still adjust and filter it.
        """

        frame_w, frame_h = frame_size
        out: list[Detection] = []
        for raw in coerce_boxes(raw_boxes):
            if raw.label != PERSON_LABEL or raw.score < self.intake_threshold:
                continue
            clipped = clip_pixel_box(raw.box_px, frame_w, frame_h)
            if clipped[2] <= 0 or clipped[3] <= 0:
                logger.debug("Dropping degenerate box %s", raw.box_px)
                continue
            box = validate_box(normalize_pixel_box(clipped, frame_w, frame_h))
            out.append(
                Detection(
                    id=next_detection_id("box"),
                    bounding_box=box,
                    confidence=float(raw.score),
                    is_fully_visible=is_fully_visible(box),
                )
            )
            if len(out) >= self.max_detections:
                break
        return out
