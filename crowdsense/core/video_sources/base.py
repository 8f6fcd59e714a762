"""Frame source abstractions.

The analyzer consumes frames through a small interface (`FrameSource`) so the
capture implementation (still image, video file) can be swapped without
affecting the pipeline. Video sources expose a seekable time cursor; seeking
is awaited before the next frame is read.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

import cv2
import numpy as np

from crowdsense.core.errors import InvalidSource
from crowdsense.core.types import Frame

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """Base interface for anything that can produce analyzable frames."""

    @property
    @abstractmethod
    def frame_size(self) -> tuple[int, int]:
        """Return (width, height) in pixels."""

    @property
    def duration(self) -> float | None:
        """Length in seconds, or `None` for sources without a timeline."""

        return None

    @abstractmethod
    def read(self) -> Frame | None:
        """Return the frame at the current cursor, or `None` when unavailable."""

        raise NotImplementedError

    async def seek(self, seconds: float) -> None:
        """Move the cursor and wait until the seek has completed."""

        return None

    def close(self) -> None:
        """Release any underlying resources."""

        return None

    def __enter__(self) -> FrameSource:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()


class ImageSource(FrameSource):
    """A single still frame."""

    def __init__(self, frame: Frame) -> None:
        if frame is None or frame.ndim < 2 or frame.shape[0] == 0 or frame.shape[1] == 0:
            raise InvalidSource("image is empty")
        self._frame = frame

    @classmethod
    def from_path(cls, path: str | Path) -> ImageSource:
        """Decode an image file with OpenCV."""

        frame = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if frame is None:
            raise InvalidSource(f"Failed to load image: {path}")
        return cls(frame)

    @classmethod
    def from_bytes(cls, data: bytes) -> ImageSource:
        """Decode an encoded image (JPEG/PNG/...) held in memory."""

        buf = np.frombuffer(data, dtype=np.uint8)
        frame = cv2.imdecode(buf, cv2.IMREAD_COLOR) if buf.size else None
        if frame is None:
            raise InvalidSource("Failed to decode image payload")
        return cls(frame)

    @property
    def frame_size(self) -> tuple[int, int]:
        h, w = self._frame.shape[:2]
        return int(w), int(h)

    def read(self) -> Frame | None:
        return self._frame


class VideoFileSource(FrameSource):
    """Seekable video file backed by `cv2.VideoCapture`."""

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self.cap = cv2.VideoCapture(self._path)
        if not self.cap.isOpened():
            raise InvalidSource(f"Failed to open video source: {path}")
        w = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        h = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        if w <= 0 or h <= 0:
            self.cap.release()
            raise InvalidSource(f"Video has zero frame size: {path}")
        self._size = (w, h)

        # Not all OpenCV backends expose FPS / frame count.
        fps = float(self.cap.get(cv2.CAP_PROP_FPS) or 0.0)
        frames = float(self.cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0)
        self._duration = frames / fps if fps > 0.0 and frames > 0.0 else None

    @property
    def frame_size(self) -> tuple[int, int]:
        return self._size

    @property
    def duration(self) -> float | None:
        return self._duration

    def _seek_blocking(self, seconds: float) -> None:
        if not self.cap.set(cv2.CAP_PROP_POS_MSEC, max(0.0, float(seconds)) * 1000.0):
            logger.debug("Backend ignored seek to %.2fs on %s", seconds, self._path)

    async def seek(self, seconds: float) -> None:
        await asyncio.to_thread(self._seek_blocking, seconds)

    def read(self) -> Frame | None:
        ok, frame = self.cap.read()
        if not ok:
            return None
        return frame

    def close(self) -> None:
        self.cap.release()
