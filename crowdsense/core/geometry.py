from __future__ import annotations

from crowdsense.core.types import BoundingBox, PixelBox, Point

# Boxes built by expansion may overhang the frame edge by this much.
BOX_EPSILON = 0.2
VISIBILITY_MARGIN = 0.02


def validate_box(box: BoundingBox) -> BoundingBox:
    """Return `box` unchanged, or raise `ValueError` when it is malformed."""

    if not box.width > 0.0 or not box.height > 0.0:
        raise ValueError(f"bounding box must have positive size, got {box}")
    if box.x + box.width > 1.0 + BOX_EPSILON or box.y + box.height > 1.0 + BOX_EPSILON:
        raise ValueError(f"bounding box exceeds the frame, got {box}")
    return box


def box_area(box: BoundingBox) -> float:
    return max(0.0, box.width) * max(0.0, box.height)


def box_center(box: BoundingBox) -> Point:
    """Return the geometric center of a box."""

    return (box.x + box.width / 2.0, box.y + box.height / 2.0)


def intersection_over_union(a: BoundingBox, b: BoundingBox) -> float:
    """Compute the intersection-over-union (IoU) of two normalized boxes."""

    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.x + a.width, b.x + b.width)
    y2 = min(a.y + a.height, b.y + b.height)
    inter = max(0.0, x2 - x1) * max(0.0, y2 - y1)
    if inter <= 0.0:
        return 0.0
    union = box_area(a) + box_area(b) - inter
    if union <= 0.0:  # pragma: no cover
        return 0.0  # pragma: no cover
    return min(1.0, inter / union)


def expand_box(box: BoundingBox, margin: float) -> BoundingBox:
    """Grow a box by `margin` of its size on each side.

    The result is clamped to `[0, 1 + BOX_EPSILON]` on both axes.
    """

    mx = box.width * float(margin)
    my = box.height * float(margin)
    x = max(0.0, box.x - mx)
    y = max(0.0, box.y - my)
    limit = 1.0 + BOX_EPSILON
    return BoundingBox(
        x=x,
        y=y,
        width=min(box.width + 2.0 * mx, limit - x),
        height=min(box.height + 2.0 * my, limit - y),
    )


def clip_pixel_box(box_px: PixelBox, frame_w: int, frame_h: int) -> PixelBox:
    """Clip a pixel `xywh` box to the frame; size may become zero."""

    x, y, w, h = box_px
    x1 = min(max(0.0, float(x)), float(frame_w))
    y1 = min(max(0.0, float(y)), float(frame_h))
    x2 = min(max(0.0, float(x) + float(w)), float(frame_w))
    y2 = min(max(0.0, float(y) + float(h)), float(frame_h))
    return (x1, y1, max(0.0, x2 - x1), max(0.0, y2 - y1))


def normalize_pixel_box(box_px: PixelBox, frame_w: int, frame_h: int) -> BoundingBox:
    """Convert a pixel `xywh` box into frame-relative coordinates."""

    x, y, w, h = box_px
    return BoundingBox(
        x=float(x) / float(frame_w),
        y=float(y) / float(frame_h),
        width=float(w) / float(frame_w),
        height=float(h) / float(frame_h),
    )


def is_fully_visible(box: BoundingBox, margin: float = VISIBILITY_MARGIN) -> bool:
    """Return True when the box lies at least `margin` inside every frame edge."""

    return (
        box.x > margin
        and box.y > margin
        and box.x + box.width < 1.0 - margin
        and box.y + box.height < 1.0 - margin
    )
