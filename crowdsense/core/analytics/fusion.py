"""Cross-model fusion of box detections with pose estimates.

The pose estimator acts as an independent witness for the box detector:

- candidates overlapping a pose with enough confident keypoints get their confidence
  averaged with the pose score and inherit its keypoints
- candidates with no supporting pose are only lightly penalized
- scored poses showing a head or torso that no candidate explains are promoted
  to detections
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from crowdsense.core.analytics.normalizer import INTAKE_FACTOR, coerce_poses, next_detection_id
from crowdsense.core.geometry import expand_box, intersection_over_union, is_fully_visible
from crowdsense.core.types import BoundingBox, Detection, Keypoint, RawPoseDetection

HEAD_KEYPOINTS = frozenset({"nose"})
TORSO_KEYPOINTS = frozenset({"left_shoulder", "right_shoulder"})


@dataclass(frozen=True)
class FusionConfig:
    """Thresholds used when reconciling boxes with poses."""

    match_iou: float = 0.2
    keypoint_score: float = 0.3
    head_score: float = 0.5
    torso_score: float = 0.3
    unmatched_penalty: float = 0.95
    expand_margin: float = 0.1
    # Used for poses that carry no overall score.
    default_pose_score: float = 0.5


@dataclass(frozen=True)
class PoseEvidence:
    """A pose with enough confident keypoints to confirm or become a person."""

    pose: RawPoseDetection
    qualifying: tuple[Keypoint, ...]
    box: BoundingBox

    @property
    def coverage(self) -> float:
        total = len(self.pose.keypoints)
        return len(self.qualifying) / total if total else 0.0

    @property
    def mean_keypoint_score(self) -> float:
        return sum(kp.score for kp in self.qualifying) / len(self.qualifying)


def has_anatomy(keypoints: Iterable[Keypoint], config: FusionConfig) -> bool:
    """Return True when a head or a torso keypoint is confidently visible."""

    for kp in keypoints:
        if kp.name in HEAD_KEYPOINTS and kp.score > config.head_score:
            return True
        if kp.name in TORSO_KEYPOINTS and kp.score > config.torso_score:
            return True
    return False


def keypoint_box(
    keypoints: Iterable[Keypoint], frame_size: tuple[int, int]
) -> BoundingBox | None:
    """Return the normalized extent of `keypoints` (None when empty)."""

    pts = list(keypoints)
    if not pts:
        return None
    frame_w, frame_h = frame_size
    min_x = min(kp.x for kp in pts)
    max_x = max(kp.x for kp in pts)
    min_y = min(kp.y for kp in pts)
    max_y = max(kp.y for kp in pts)
    return BoundingBox(
        x=min_x / frame_w,
        y=min_y / frame_h,
        width=(max_x - min_x) / frame_w,
        height=(max_y - min_y) / frame_h,
    )


def pose_evidence(
    pose: RawPoseDetection,
    frame_size: tuple[int, int],
    min_keypoints: int,
    config: FusionConfig,
) -> PoseEvidence | None:
    """Return the usable evidence of a pose, or None if too few keypoints qualify.

    The head/torso check is left to promotion: a pose showing only legs can
    still confirm a box.
    """

    qualifying = tuple(kp for kp in pose.keypoints if kp.score > config.keypoint_score)
    if len(qualifying) < min_keypoints:
        return None
    box = keypoint_box(qualifying, frame_size)
    if box is None:
        return None
    return PoseEvidence(pose=pose, qualifying=qualifying, box=box)


class CrossModelFusion:
    """Reconcile candidate boxes with pose-estimator outputs."""

    def __init__(self, config: FusionConfig | None = None) -> None:
        self.config = config or FusionConfig()

    def _pose_score(self, pose: RawPoseDetection) -> float:
        return self.config.default_pose_score if pose.score is None else pose.score

    def validate(
        self, candidates: list[Detection], evidence: list[PoseEvidence]
    ) -> tuple[list[Detection], set[int]]:
        """Adjust candidate confidences against poses.

        Returns the validated candidates and the indices of poses that matched
        at least one candidate.
        """

        cfg = self.config
        matched_poses: set[int] = set()
        out: list[Detection] = []
        for det in candidates:
            matches = [
                i
                for i, ev in enumerate(evidence)
                if intersection_over_union(det.bounding_box, ev.box) > cfg.match_iou
            ]
            if not matches:
                out.append(replace(det, confidence=det.confidence * cfg.unmatched_penalty))
                continue
            matched_poses.update(matches)
            scores = [self._pose_score(evidence[i].pose) for i in matches]
            # First maximum wins so equal-score ties keep detector order.
            best = evidence[matches[scores.index(max(scores))]]
            out.append(
                replace(
                    det,
                    confidence=(det.confidence + sum(scores) / len(scores)) / 2.0,
                    keypoints=best.pose.keypoints,
                )
            )
        return out, matched_poses

    def promote(
        self,
        evidence: list[PoseEvidence],
        skip: set[int],
        confidence_threshold: float,
    ) -> list[Detection]:
        """Turn unexplained poses into detections."""

        cfg = self.config
        out: list[Detection] = []
        for i, ev in enumerate(evidence):
            if i in skip:
                continue
            # Poses without an overall score may confirm boxes but never stand alone.
            if ev.pose.score is None or ev.pose.score < confidence_threshold * INTAKE_FACTOR:
                continue
            if not has_anatomy(ev.qualifying, cfg):
                continue
            if ev.box.width <= 0.0 or ev.box.height <= 0.0:
                continue
            confidence = (ev.pose.score + ev.mean_keypoint_score + ev.coverage) / 3.0
            box = expand_box(ev.box, cfg.expand_margin)
            if box.width <= 0.0 or box.height <= 0.0:
                # Keypoints entirely outside the frame.
                continue
            out.append(
                Detection(
                    id=next_detection_id("pose"),
                    bounding_box=box,
                    confidence=confidence,
                    keypoints=ev.pose.keypoints,
                    is_fully_visible=is_fully_visible(box),
                )
            )
        return out

    def fuse(
        self,
        candidates: list[Detection],
        poses: Iterable[RawPoseDetection | Mapping[str, Any]],
        frame_size: tuple[int, int],
        *,
        min_keypoints: int = 3,
        confidence_threshold: float = 0.35,
    ) -> list[Detection]:
        """Return validated candidates followed by promoted pose-only people.

        An empty pose list leaves the candidates untouched.
        """

        raw_poses = coerce_poses(poses)
        if not raw_poses:
            return list(candidates)
        evidence = [
            ev
            for ev in (pose_evidence(p, frame_size, min_keypoints, self.config) for p in raw_poses)
            if ev is not None
        ]
        validated, matched = self.validate(candidates, evidence)
        return validated + self.promote(evidence, matched, confidence_threshold)
