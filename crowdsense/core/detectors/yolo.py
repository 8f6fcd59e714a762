"""Ultralytics YOLO model adapters.

`YoloPersonDetector` (box detector) and `YoloPoseEstimator` (keypoint pose
model) translate Ultralytics results into `RawBoxDetection` /
`RawPoseDetection` records. Models load lazily on first use; a load failure
surfaces as `ModelUnavailable`. Torch stays an optional runtime dependency:
ONNX exports can run without importing torch.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import os
import threading
from contextlib import nullcontext
from typing import Any

import numpy as np
from ultralytics import YOLO

from crowdsense.core.errors import ModelUnavailable
from crowdsense.core.types import Frame, Keypoint, RawBoxDetection, RawPoseDetection

logger = logging.getLogger(__name__)

COCO_KEYPOINT_NAMES = (
    "nose",
    "left_eye",
    "right_eye",
    "left_ear",
    "right_ear",
    "left_shoulder",
    "right_shoulder",
    "left_elbow",
    "right_elbow",
    "left_wrist",
    "right_wrist",
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
)


def _to_numpy(value: Any) -> np.ndarray:
    if hasattr(value, "cpu"):
        value = value.cpu()
    return value.numpy() if hasattr(value, "numpy") else np.asarray(value)


class _YoloModel:
    """Lazily loaded Ultralytics model shared by the adapters below."""

    _torch_threads_configured: bool = False

    def __init__(self, model_name: str, conf: float = 0.1, task: str | None = None) -> None:
        self.model_name = model_name
        self.task = task
        self.conf = conf
        self.is_onnx = model_name.lower().endswith(".onnx")
        self.device: str = "cpu"
        self.model: Any | None = None
        self._load_lock = threading.Lock()
        self._torch_inference_mode: Any | None = None

    @classmethod
    def _configure_torch_threads_from_env(cls) -> None:
        """Configure torch thread counts from `CRW_TORCH_THREADS` (one-time)."""

        if cls._torch_threads_configured:
            return
        cls._torch_threads_configured = True

        threads_s = os.getenv("CRW_TORCH_THREADS")
        if threads_s is None or not threads_s.strip():
            return
        try:
            torch = importlib.import_module("torch")
            torch.set_num_threads(max(1, int(threads_s)))
        except Exception:
            # If torch isn't present or refuses changes, ignore.
            return

    def load(self) -> Any:
        """Load the model once; raise `ModelUnavailable` on failure."""

        if self.model is not None:
            return self.model
        with self._load_lock:
            if self.model is not None:
                return self.model
            self._configure_torch_threads_from_env()
            logger.info("Loading YOLO model %s (task=%s)", self.model_name, self.task)
            try:
                model = YOLO(self.model_name, task=self.task)
            except Exception as exc:
                raise ModelUnavailable(f"Failed to load model {self.model_name}: {exc}") from exc

            if not self.is_onnx:
                try:
                    torch = importlib.import_module("torch")
                    self._torch_inference_mode = torch.inference_mode
                except Exception:
                    self._torch_inference_mode = None
                # Avoid .to(device) on ONNX exports; Ultralytics raises TypeError.
                try:
                    model.to(self.device)
                except Exception:
                    # predict(device='cpu') still enforces CPU.
                    pass
            self.model = model
        return self.model

    def _predict(self, frame: Frame, **kwargs: Any) -> Any | None:
        model = self.load()
        infer_ctx = (
            self._torch_inference_mode()
            if self._torch_inference_mode is not None
            else nullcontext()
        )
        with infer_ctx:
            results = model.predict(
                frame, conf=self.conf, verbose=False, device=self.device, **kwargs
            )
        if not results:
            return None
        # Single-frame inference => first result.
        return results[0]


class YoloPersonDetector(_YoloModel):
    """Box detector returning person candidates in pixel `xywh`.

    The internal confidence floor is kept low on purpose: the normalizer
    applies the real intake threshold.
    """

    def __init__(self, model_name: str = "yolo11n.pt", conf: float = 0.1) -> None:
        super().__init__(model_name, conf=conf, task="detect")

    def detect_sync(self, frame: Frame, max_detections: int = 200) -> list[RawBoxDetection]:
        # COCO class id 0 is "person"; filtering early trims NMS work on CPU.
        result = self._predict(frame, classes=[0], max_det=int(max_detections))
        if result is None:
            return []
        boxes = getattr(result, "boxes", None)
        if boxes is None or len(boxes) == 0:
            return []

        # Boxes.data = (x1, y1, x2, y2, conf, cls)
        data_np = _to_numpy(boxes.data)
        if data_np.ndim != 2 or data_np.shape[1] < 6:
            return []
        names = getattr(result, "names", None) or {0: "person"}

        out: list[RawBoxDetection] = []
        for x1, y1, x2, y2, score, cls in data_np[:, :6]:
            out.append(
                RawBoxDetection(
                    label=str(names.get(int(cls), int(cls))),
                    score=float(score),
                    box_px=(float(x1), float(y1), float(x2 - x1), float(y2 - y1)),
                )
            )
        return out

    async def detect(self, frame: Frame, max_detections: int = 200) -> list[RawBoxDetection]:
        """Run inference off the event loop and return raw person boxes."""

        return await asyncio.to_thread(self.detect_sync, frame, max_detections)


class YoloPoseEstimator(_YoloModel):
    """Pose estimator returning COCO-17 keypoints in pixel coordinates."""

    def __init__(self, model_name: str = "yolo11n-pose.pt", conf: float = 0.1) -> None:
        super().__init__(model_name, conf=conf, task="pose")

    def estimate_poses_sync(self, frame: Frame, max_poses: int = 200) -> list[RawPoseDetection]:
        result = self._predict(frame, max_det=int(max_poses))
        if result is None:
            return []
        kpts = getattr(result, "keypoints", None)
        boxes = getattr(result, "boxes", None)
        if kpts is None or getattr(kpts, "data", None) is None or boxes is None:
            return []

        kpts_np = _to_numpy(kpts.data)  # (N, 17, 3) -> x, y, confidence
        confs_np = _to_numpy(boxes.conf)
        if kpts_np.ndim != 3 or kpts_np.shape[0] == 0:
            return []

        out: list[RawPoseDetection] = []
        for person, score in zip(kpts_np, confs_np, strict=False):
            keypoints = tuple(
                Keypoint(
                    x=float(kp[0]),
                    y=float(kp[1]),
                    score=float(kp[2]) if kp.shape[0] > 2 else 1.0,
                    name=COCO_KEYPOINT_NAMES[i] if i < len(COCO_KEYPOINT_NAMES) else str(i),
                )
                for i, kp in enumerate(person)
            )
            out.append(RawPoseDetection(score=float(score), keypoints=keypoints))
        return out

    async def estimate_poses(self, frame: Frame, max_poses: int = 200) -> list[RawPoseDetection]:
        """Run pose inference off the event loop."""

        return await asyncio.to_thread(self.estimate_poses_sync, frame, max_poses)


class ModelRegistry:
    """Process-wide holder of the detector and pose estimator.

    Adapters are created on first access and their weights load on first
    inference, so building a registry never downloads anything.
    """

    def __init__(self, detector_model: str = "yolo11n.pt", pose_model: str = "yolo11n-pose.pt") -> None:
        self.detector_model = detector_model
        self.pose_model = pose_model
        self._lock = threading.Lock()
        self._detector: YoloPersonDetector | None = None
        self._pose: YoloPoseEstimator | None = None

    @property
    def detector(self) -> YoloPersonDetector:
        with self._lock:
            if self._detector is None:
                self._detector = YoloPersonDetector(self.detector_model)
            return self._detector

    @property
    def pose_estimator(self) -> YoloPoseEstimator:
        with self._lock:
            if self._pose is None:
                self._pose = YoloPoseEstimator(self.pose_model)
            return self._pose

    def preload(self) -> None:
        """Load both models now; raises `ModelUnavailable` on failure."""

        self.detector.load()
        self.pose_estimator.load()
