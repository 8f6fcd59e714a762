import pytest

from crowdsense.core.geometry import (
    clip_pixel_box,
    expand_box,
    intersection_over_union,
    is_fully_visible,
    normalize_pixel_box,
    validate_box,
)
from crowdsense.core.seeded import SeededSequence
from crowdsense.core.types import BoundingBox


def _random_boxes(key: str, n: int) -> list[BoundingBox]:
    rng = SeededSequence(key)
    boxes = []
    for _ in range(n):
        w = 0.01 + rng() * 0.4
        h = 0.01 + rng() * 0.4
        boxes.append(BoundingBox(x=rng() * (1 - w), y=rng() * (1 - h), width=w, height=h))
    return boxes


def test_iou_of_partial_overlap():
    a = BoundingBox(0.0, 0.0, 0.5, 0.5)
    b = BoundingBox(0.25, 0.25, 0.5, 0.5)
    assert intersection_over_union(a, b) == pytest.approx(0.0625 / 0.4375)


def test_iou_identity_and_disjoint():
    a = BoundingBox(0.1, 0.1, 0.2, 0.3)
    assert intersection_over_union(a, a) == pytest.approx(1.0)
    assert intersection_over_union(a, BoundingBox(0.6, 0.6, 0.1, 0.1)) == 0.0
    # Touching edges do not intersect.
    assert intersection_over_union(a, BoundingBox(0.3, 0.1, 0.2, 0.3)) == 0.0


def test_iou_symmetric_and_bounded():
    boxes = _random_boxes("iou-props", 25)
    for a in boxes:
        for b in boxes:
            iou = intersection_over_union(a, b)
            assert 0.0 <= iou <= 1.0
            assert iou == pytest.approx(intersection_over_union(b, a))


def test_expand_box_grows_each_side():
    out = expand_box(BoundingBox(0.1, 0.1, 0.2, 0.4), 0.1)
    assert out.x == pytest.approx(0.08)
    assert out.y == pytest.approx(0.06)
    assert out.width == pytest.approx(0.24)
    assert out.height == pytest.approx(0.48)


def test_expand_box_clamps_at_origin():
    out = expand_box(BoundingBox(0.0, 0.01, 0.2, 0.2), 0.1)
    assert out.x == 0.0
    assert out.y == 0.0


def test_clip_and_normalize_pixel_box():
    clipped = clip_pixel_box((-10.0, 5.0, 30.0, 20.0), 100, 100)
    assert clipped == (0.0, 5.0, 20.0, 20.0)
    box = normalize_pixel_box(clipped, 100, 50)
    assert box == BoundingBox(0.0, 0.1, 0.2, 0.4)


def test_clip_fully_outside_box_is_degenerate():
    assert clip_pixel_box((150.0, 10.0, 20.0, 20.0), 100, 100)[2] == 0.0


def test_is_fully_visible_margin():
    assert is_fully_visible(BoundingBox(0.5, 0.5, 0.1, 0.1))
    assert not is_fully_visible(BoundingBox(0.01, 0.5, 0.1, 0.1))
    assert not is_fully_visible(BoundingBox(0.5, 0.5, 0.5, 0.1))


def test_validate_box_rejects_malformed():
    with pytest.raises(ValueError):
        validate_box(BoundingBox(0.1, 0.1, 0.0, 0.2))
    with pytest.raises(ValueError):
        validate_box(BoundingBox(0.9, 0.1, 0.5, 0.2))
    # Slight overhang from expansion is tolerated.
    box = BoundingBox(0.9, 0.1, 0.2, 0.2)
    assert validate_box(box) is box
