"""Overlap classification and duplicate suppression.

Two IoU bands matter here:

- `overlap_iou_low < IoU < overlap_iou_high`: distinct people standing close
  together. Both are kept and flagged `is_overlapping`, which makes the final
  confidence filter more forgiving for them.
- `IoU > duplicate_iou`: the same person reported twice (typically once by
  each model). Only one record survives.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from crowdsense.core.geometry import intersection_over_union
from crowdsense.core.types import Detection


@dataclass(frozen=True)
class DedupConfig:
    """IoU bands and confidence margins for overlap/duplicate handling."""

    duplicate_iou: float = 0.4
    overlap_iou_low: float = 0.1
    overlap_iou_high: float = 0.5
    # A duplicate replaces the kept record only when clearly more confident.
    confidence_margin: float = 0.1
    # Overlapping people survive down to threshold * overlap_leniency.
    overlap_leniency: float = 0.9


def classify_overlaps(
    detections: list[Detection], config: DedupConfig | None = None
) -> list[Detection]:
    """Flag detections in moderate mutual overlap without merging them."""

    cfg = config or DedupConfig()
    n = len(detections)
    if n <= 1:
        return list(detections)

    flagged = [d.is_overlapping for d in detections]
    for i in range(n):
        for j in range(i + 1, n):
            iou = intersection_over_union(detections[i].bounding_box, detections[j].bounding_box)
            if cfg.overlap_iou_low < iou < cfg.overlap_iou_high:
                flagged[i] = True
                flagged[j] = True
    return [
        d if d.is_overlapping == flag else replace(d, is_overlapping=flag)
        for d, flag in zip(detections, flagged, strict=True)
    ]


def _keypoint_count(det: Detection) -> int:
    return len(det.keypoints) if det.keypoints else 0


def _resolve_duplicate(kept: Detection, new: Detection, cfg: DedupConfig) -> Detection:
    """Return the record that represents a duplicate pair."""

    if new.confidence > kept.confidence + cfg.confidence_margin:
        return new
    if (
        abs(new.confidence - kept.confidence) < cfg.confidence_margin
        and _keypoint_count(new) > _keypoint_count(kept)
    ):
        return new

    merged = kept
    if new.keypoints and not kept.keypoints:
        merged = replace(merged, keypoints=new.keypoints)
    if new.is_overlapping and not merged.is_overlapping:
        merged = replace(merged, is_overlapping=True)
    return merged


def _by_confidence(detections: list[Detection]) -> list[Detection]:
    # sorted() is stable: equal confidences keep their pipeline order.
    return sorted(detections, key=lambda d: d.confidence, reverse=True)


def _dedup_pass(detections: list[Detection], cfg: DedupConfig) -> list[Detection]:
    unique: list[Detection] = []
    for det in _by_confidence(detections):
        for idx, kept in enumerate(unique):
            if intersection_over_union(det.bounding_box, kept.bounding_box) > cfg.duplicate_iou:
                unique[idx] = _resolve_duplicate(kept, det, cfg)
                break
        else:
            unique.append(det)
    return _by_confidence(unique)


def deduplicate(detections: list[Detection], config: DedupConfig | None = None) -> list[Detection]:
    """Collapse duplicate detections, most confident first.

    Each detection is compared with the already accepted ones in acceptance
    order; the first accepted record it duplicates absorbs it. A replacement
    can move a box next to another accepted one, so passes repeat until one
    merges nothing. The result is ordered by confidence and is a fixed point.
    """

    cfg = config or DedupConfig()
    current = list(detections)
    while True:
        unique = _dedup_pass(current, cfg)
        if len(unique) == len(current):
            return unique
        current = unique


def filter_by_confidence(
    detections: list[Detection],
    confidence_threshold: float,
    config: DedupConfig | None = None,
) -> list[Detection]:
    """Drop low-confidence detections, with a softer bar for overlapping ones."""

    cfg = config or DedupConfig()
    lenient = confidence_threshold * cfg.overlap_leniency
    return [
        d
        for d in detections
        if d.confidence >= (lenient if d.is_overlapping else confidence_threshold)
    ]
