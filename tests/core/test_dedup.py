from crowdsense.core.analytics.dedup import (
    DedupConfig,
    classify_overlaps,
    deduplicate,
    filter_by_confidence,
)
from crowdsense.core.geometry import intersection_over_union
from crowdsense.core.seeded import SeededSequence
from crowdsense.core.types import BoundingBox, Detection, Keypoint

_KP = (Keypoint(x=1.0, y=1.0, score=0.9, name="nose"),)


def _det(i, box, confidence=0.8, keypoints=None, overlapping=False):
    return Detection(
        id=f"d{i}",
        bounding_box=BoundingBox(*box),
        confidence=confidence,
        keypoints=keypoints,
        is_overlapping=overlapping,
    )


def test_identical_boxes_collapse_to_one():
    box = (0.1, 0.1, 0.1, 0.1)
    out = deduplicate([_det(0, box, 0.7), _det(1, box, 0.9)])
    assert len(out) == 1
    assert out[0].confidence == 0.9


def test_heavy_overlap_is_merged():
    a, b = (0.0, 0.0, 0.2, 0.2), (0.02, 0.0, 0.2, 0.2)
    assert intersection_over_union(BoundingBox(*a), BoundingBox(*b)) >= 0.5
    assert len(deduplicate([_det(0, a), _det(1, b)])) == 1


def test_moderate_overlap_keeps_both_and_flags_them():
    dets = classify_overlaps([_det(0, (0.0, 0.0, 0.2, 0.2)), _det(1, (0.1, 0.0, 0.2, 0.2))])
    assert all(d.is_overlapping for d in dets)
    out = deduplicate(dets)
    assert len(out) == 2
    assert all(d.is_overlapping for d in out)


def test_upper_overlap_band_is_flagged_and_merged():
    # IoU ~0.43: inside the overlap band and above the duplicate threshold.
    dets = classify_overlaps([_det(0, (0.0, 0.0, 0.2, 0.2)), _det(1, (0.08, 0.0, 0.2, 0.2))])
    assert all(d.is_overlapping for d in dets)
    out = deduplicate(dets)
    assert len(out) == 1
    assert out[0].is_overlapping


def test_disjoint_boxes_are_not_flagged():
    dets = classify_overlaps([_det(0, (0.0, 0.0, 0.1, 0.1)), _det(1, (0.5, 0.5, 0.1, 0.1))])
    assert not any(d.is_overlapping for d in dets)


def test_richer_pose_wins_between_similar_confidences():
    box = (0.3, 0.3, 0.2, 0.2)
    out = deduplicate([_det(0, box, 0.80), _det(1, box, 0.75, keypoints=_KP)])
    assert len(out) == 1
    assert out[0].id == "d1"


def test_clearly_more_confident_duplicate_replaces():
    box = (0.3, 0.3, 0.2, 0.2)
    out = deduplicate([_det(0, box, 0.5, keypoints=_KP), _det(1, box, 0.9)])
    assert out[0].id == "d1"


def test_kept_record_inherits_keypoints_and_overlap_flag():
    box = (0.3, 0.3, 0.2, 0.2)
    out = deduplicate([_det(0, box, 0.9), _det(1, box, 0.5, keypoints=_KP, overlapping=True)])
    assert out[0].id == "d0"
    assert out[0].keypoints == _KP
    assert out[0].is_overlapping


def test_deduplicate_is_idempotent():
    rng = SeededSequence("dedup-fixed-point")
    dets = []
    for i in range(60):
        w, h = 0.05 + rng() * 0.1, 0.1 + rng() * 0.1
        dets.append(_det(i, (rng() * (1 - w), rng() * (1 - h), w, h), confidence=0.3 + rng() * 0.7))
    once = deduplicate(classify_overlaps(dets))
    assert deduplicate(once) == once
    for i, a in enumerate(once):
        for b in once[i + 1 :]:
            assert intersection_over_union(a.bounding_box, b.bounding_box) <= 0.4


def test_output_is_sorted_by_confidence():
    dets = [
        _det(0, (0.0, 0.0, 0.1, 0.1), 0.5),
        _det(1, (0.5, 0.5, 0.1, 0.1), 0.9),
        _det(2, (0.8, 0.0, 0.1, 0.1), 0.7),
    ]
    assert [d.id for d in deduplicate(dets)] == ["d1", "d2", "d0"]


def test_filter_is_lenient_for_overlapping_people():
    dets = [
        _det(0, (0.0, 0.0, 0.1, 0.1), 0.33, overlapping=True),
        _det(1, (0.5, 0.5, 0.1, 0.1), 0.33),
        _det(2, (0.8, 0.0, 0.1, 0.1), 0.30, overlapping=True),
    ]
    assert [d.id for d in filter_by_confidence(dets, 0.35)] == ["d0"]


def test_custom_thresholds_are_honoured():
    cfg = DedupConfig(duplicate_iou=0.9)
    a, b = (0.0, 0.0, 0.2, 0.2), (0.02, 0.0, 0.2, 0.2)
    assert len(deduplicate([_det(0, a), _det(1, b)], cfg)) == 2
    assert filter_by_confidence([_det(0, a, 0.5)], 0.6, cfg) == []
