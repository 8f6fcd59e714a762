import asyncio

import numpy as np
import pytest

from crowdsense.core.detectors import yolo as yolo_mod
from crowdsense.core.errors import ModelUnavailable
from crowdsense.core.types import RawBoxDetection


class FakeBoxes:
    def __init__(self, data):
        self.data = np.asarray(data, dtype=np.float32)
        self.conf = self.data[:, 4] if len(self.data) else np.zeros((0,), dtype=np.float32)

    def __len__(self):
        return len(self.data)


class FakeKeypoints:
    def __init__(self, data):
        self.data = np.asarray(data, dtype=np.float32)


class FakeResult:
    def __init__(self, boxes, keypoints=None):
        self.boxes = FakeBoxes(boxes)
        self.keypoints = FakeKeypoints(keypoints) if keypoints is not None else None
        self.names = {0: "person"}


class FakeYOLO:
    instances: list["FakeYOLO"] = []
    result = FakeResult([[10, 20, 50, 120, 0.9, 0]])

    def __init__(self, model_name, task=None):
        self.model_name = model_name
        self.task = task
        self.calls = []
        FakeYOLO.instances.append(self)

    def to(self, device):
        return self

    def predict(self, frame, **kwargs):
        self.calls.append(kwargs)
        return [FakeYOLO.result]


@pytest.fixture(autouse=True)
def fake_yolo(monkeypatch):
    FakeYOLO.instances = []
    FakeYOLO.result = FakeResult([[10, 20, 50, 120, 0.9, 0]])
    monkeypatch.setattr(yolo_mod, "YOLO", FakeYOLO)
    return FakeYOLO


FRAME = np.zeros((200, 200, 3), dtype=np.uint8)


def test_detector_loads_lazily_once():
    det = yolo_mod.YoloPersonDetector("yolo11n.pt")
    assert FakeYOLO.instances == []
    asyncio.run(det.detect(FRAME, 10))
    asyncio.run(det.detect(FRAME, 10))
    assert len(FakeYOLO.instances) == 1
    assert FakeYOLO.instances[0].task == "detect"


def test_detector_returns_pixel_xywh_person_boxes():
    det = yolo_mod.YoloPersonDetector("yolo11n.pt", conf=0.2)
    out = asyncio.run(det.detect(FRAME, 7))
    assert out == [RawBoxDetection(label="person", score=pytest.approx(0.9), box_px=(10.0, 20.0, 40.0, 100.0))]
    kwargs = FakeYOLO.instances[0].calls[0]
    assert kwargs["classes"] == [0]
    assert kwargs["max_det"] == 7
    assert kwargs["conf"] == 0.2
    assert kwargs["device"] == "cpu"


def test_detector_handles_empty_results():
    FakeYOLO.result = FakeResult(np.zeros((0, 6)))
    assert asyncio.run(yolo_mod.YoloPersonDetector().detect(FRAME, 10)) == []


def test_load_failure_raises_model_unavailable(monkeypatch):
    def broken(*_args, **_kwargs):
        raise FileNotFoundError("no weights")

    monkeypatch.setattr(yolo_mod, "YOLO", broken)
    det = yolo_mod.YoloPersonDetector("missing.pt")
    with pytest.raises(ModelUnavailable):
        asyncio.run(det.detect(FRAME, 10))


def test_pose_estimator_names_coco_keypoints():
    kpts = np.zeros((1, 17, 3), dtype=np.float32)
    kpts[0, :, 0] = np.arange(17)
    kpts[0, :, 2] = 0.8
    FakeYOLO.result = FakeResult([[0, 0, 20, 40, 0.7, 0]], keypoints=kpts)

    est = yolo_mod.YoloPoseEstimator("yolo11n-pose.pt")
    (pose,) = asyncio.run(est.estimate_poses(FRAME, 5))
    assert FakeYOLO.instances[0].task == "pose"
    assert pose.score == pytest.approx(0.7)
    assert len(pose.keypoints) == 17
    assert pose.keypoints[0].name == "nose"
    assert pose.keypoints[6].name == "right_shoulder"
    assert pose.keypoints[6].x == 6.0
    assert pose.keypoints[6].score == pytest.approx(0.8)


def test_pose_estimator_without_keypoints():
    FakeYOLO.result = FakeResult([[0, 0, 20, 40, 0.7, 0]])
    assert asyncio.run(yolo_mod.YoloPoseEstimator().estimate_poses(FRAME, 5)) == []


def test_registry_shares_adapters_and_preloads():
    registry = yolo_mod.ModelRegistry("det.pt", "pose.pt")
    assert registry.detector is registry.detector
    assert registry.pose_estimator.model_name == "pose.pt"
    registry.preload()
    assert sorted(m.model_name for m in FakeYOLO.instances) == ["det.pt", "pose.pt"]
