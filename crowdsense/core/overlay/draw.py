"""Overlay drawing helpers (OpenCV).

Renders an `AnalysisResult` on top of the analyzed frame: person boxes
(overlapping people in a separate colour) and hotspot circles blended by
intensity, i.e. the heat map the dashboard shows.
"""

from __future__ import annotations

import cv2
import numpy as np

from crowdsense.core.types import AnalysisResult

BOX_COLOR = (0, 170, 255)
OVERLAP_COLOR = (255, 128, 0)  # orange
KEYPOINT_COLOR = (57, 255, 20)  # bright green
TEXT_COLOR = (255, 255, 255)
HOTSPOT_COLOR = (0, 0, 255)
MAX_HOTSPOT_ALPHA = 0.6


def draw_overlays(frame: np.ndarray, result: AnalysisResult) -> np.ndarray:
    """Return a copy of `frame` with detections and hotspots drawn."""

    if not result.people and not result.hotspots:
        return frame

    img = frame.copy()
    h, w = img.shape[:2]

    for hotspot in result.hotspots:
        cx, cy = int(hotspot.x * w), int(hotspot.y * h)
        radius = max(1, int(hotspot.radius * min(w, h)))
        x1, y1 = max(cx - radius, 0), max(cy - radius, 0)
        x2, y2 = min(cx + radius + 1, w), min(cy + radius + 1, h)
        # Blend only the ROI to avoid expensive full-frame copies.
        roi = img[y1:y2, x1:x2]
        if roi.size == 0:
            continue
        tinted = roi.copy()
        cv2.circle(tinted, (cx - x1, cy - y1), radius, HOTSPOT_COLOR, -1)
        alpha = float(min(MAX_HOTSPOT_ALPHA, 0.1 + hotspot.intensity * 0.5))
        cv2.addWeighted(tinted, alpha, roi, 1.0 - alpha, 0, roi)

    for person in result.people:
        box = person.bounding_box
        x1, y1 = int(box.x * w), int(box.y * h)
        x2, y2 = int((box.x + box.width) * w), int((box.y + box.height) * h)
        color = OVERLAP_COLOR if person.is_overlapping else BOX_COLOR
        cv2.rectangle(img, (x1, y1), (x2, y2), color, 2)
        for kp in person.keypoints or ():
            cv2.circle(img, (int(kp.x), int(kp.y)), 3, KEYPOINT_COLOR, -1)
        label = f"{person.confidence:.2f}"
        cv2.putText(
            img,
            label,
            (x1, max(y1 - 8, 0)),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.5,
            TEXT_COLOR,
            1,
            cv2.LINE_AA,
        )
    return img
