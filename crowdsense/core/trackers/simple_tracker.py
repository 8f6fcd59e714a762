from __future__ import annotations

import itertools
from dataclasses import dataclass, replace

import numpy as np

from crowdsense.core.types import BoundingBox, Detection

IOU_SUPPRESS_VALUE = -1.0


@dataclass
class Track:
    """Internal tracker state for one person."""

    id: str
    box: BoundingBox
    missed: int = 0


def _xyxy(boxes: list[BoundingBox]) -> np.ndarray:
    arr = np.array([(b.x, b.y, b.width, b.height) for b in boxes], dtype=np.float64)
    arr[:, 2] += arr[:, 0]
    arr[:, 3] += arr[:, 1]
    return arr


def iou_matrix(a: list[BoundingBox], b: list[BoundingBox]) -> np.ndarray:
    """Pairwise IoU of two lists of normalized boxes, shape (len(a), len(b))."""

    if not a or not b:
        return np.zeros((len(a), len(b)), dtype=np.float64)
    ta = _xyxy(a)
    tb = _xyxy(b)
    xA = np.maximum(ta[:, None, 0], tb[None, :, 0])
    yA = np.maximum(ta[:, None, 1], tb[None, :, 1])
    xB = np.minimum(ta[:, None, 2], tb[None, :, 2])
    yB = np.minimum(ta[:, None, 3], tb[None, :, 3])
    inter = np.maximum(0.0, xB - xA) * np.maximum(0.0, yB - yA)
    area_a = (ta[:, 2] - ta[:, 0]) * (ta[:, 3] - ta[:, 1])
    area_b = (tb[:, 2] - tb[:, 0]) * (tb[:, 3] - tb[:, 1])
    union = area_a[:, None] + area_b[None, :] - inter
    return np.where(union > 0.0, inter / np.where(union > 0.0, union, 1.0), 0.0)


class SimpleTracker:
    """A lightweight IoU-based tracker that stamps `track_id` on detections.

    Detections are assigned to existing tracks greedily by IoU. Sampled video
    frames can be seconds apart, so the resulting ids are a correlation hint
    rather than a stable identity.
    """

    def __init__(self, iou_threshold: float = 0.3, max_missed: int = 2) -> None:
        self.iou_threshold = iou_threshold
        self.max_missed = max_missed
        self.tracks: dict[str, Track] = {}
        self._id_iter = itertools.count(1)

    def _new_track(self, det: Detection) -> str:
        tid = f"track-{next(self._id_iter)}"
        self.tracks[tid] = Track(id=tid, box=det.bounding_box)
        return tid

    def update(self, detections: list[Detection]) -> list[Detection]:
        """Update tracks from one frame and return detections with track ids."""

        track_ids = list(self.tracks.keys())
        track_list = [self.tracks[tid] for tid in track_ids]
        assigned: dict[int, str] = {}
        matched_tracks: set[int] = set()

        matrix = iou_matrix([t.box for t in track_list], [d.bounding_box for d in detections])
        while matrix.size:
            ti, di = divmod(int(matrix.argmax()), matrix.shape[1])
            if matrix[ti, di] < self.iou_threshold:
                break
            track = track_list[ti]
            track.box = detections[di].bounding_box
            track.missed = 0
            assigned[di] = track.id
            matched_tracks.add(ti)
            matrix[ti, :] = IOU_SUPPRESS_VALUE
            matrix[:, di] = IOU_SUPPRESS_VALUE

        for ti, track in enumerate(track_list):
            if ti in matched_tracks:
                continue
            track.missed += 1
            if track.missed > self.max_missed:
                del self.tracks[track.id]

        out: list[Detection] = []
        for di, det in enumerate(detections):
            tid = assigned.get(di) or self._new_track(det)
            out.append(replace(det, track_id=tid))
        return out
