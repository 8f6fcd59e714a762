import pytest

from crowdsense.core.analytics.normalizer import DetectionNormalizer, coerce_poses
from crowdsense.core.types import BoundingBox, RawBoxDetection

FRAME = (100, 100)


def _raw(score, box, label="person"):
    return RawBoxDetection(label=label, score=score, box_px=box)


def test_person_boxes_are_normalized():
    out = DetectionNormalizer().normalize([_raw(0.9, (10.0, 10.0, 20.0, 40.0))], FRAME)
    assert len(out) == 1
    det = out[0]
    assert det.bounding_box == BoundingBox(0.1, 0.1, 0.2, 0.4)
    assert det.confidence == 0.9
    assert det.is_fully_visible
    assert det.id.startswith("box-person-")
    assert det.keypoints is None


def test_filters_label_intake_threshold_and_degenerate_boxes():
    raw = [
        _raw(0.9, (10.0, 10.0, 20.0, 20.0), label="car"),
        _raw(0.2, (10.0, 10.0, 20.0, 20.0)),  # below 0.35 * 0.8
        _raw(0.3, (40.0, 10.0, 20.0, 20.0)),  # loose intake keeps it
        _raw(0.9, (150.0, 10.0, 20.0, 20.0)),  # entirely outside the frame
        _raw(0.9, (10.0, 10.0, 0.0, 20.0)),
    ]
    out = DetectionNormalizer(confidence_threshold=0.35).normalize(raw, FRAME)
    assert [d.confidence for d in out] == [0.3]


def test_boxes_are_clipped_to_the_frame():
    out = DetectionNormalizer().normalize([_raw(0.9, (90.0, 10.0, 20.0, 20.0))], FRAME)
    box = out[0].bounding_box
    assert box.x == pytest.approx(0.9)
    assert box.width == pytest.approx(0.1)
    assert not out[0].is_fully_visible


def test_max_detections_caps_output():
    raw = [_raw(0.9, (float(i), 0.0, 5.0, 5.0)) for i in range(10)]
    out = DetectionNormalizer(max_detections=3).normalize(raw, FRAME)
    assert len(out) == 3


def test_ids_are_unique_across_calls():
    normalizer = DetectionNormalizer()
    raw = [_raw(0.9, (10.0, 10.0, 20.0, 20.0))]
    ids = {normalizer.normalize(raw, FRAME)[0].id for _ in range(5)}
    assert len(ids) == 5


def test_mapping_inputs_are_validated():
    out = DetectionNormalizer().normalize(
        [{"class": "person", "score": 0.8, "bbox": [0, 0, 50, 50]}], FRAME
    )
    assert out[0].bounding_box == BoundingBox(0.0, 0.0, 0.5, 0.5)
    with pytest.raises(ValueError):
        DetectionNormalizer().normalize([{"class": "person", "score": 0.8, "bbox": [0, 0, 5]}], FRAME)
    with pytest.raises(ValueError):
        DetectionNormalizer().normalize([{"class": "person", "score": "x", "bbox": [0, 0, 5, 5]}], FRAME)


def test_coerce_poses_defaults_missing_keypoint_scores():
    (pose,) = coerce_poses([{"keypoints": [{"x": 1, "y": 2, "name": "nose"}]}])
    assert pose.score is None
    assert pose.keypoints[0].score == 0.0
    assert pose.keypoints[0].name == "nose"
