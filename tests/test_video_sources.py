import asyncio
from pathlib import Path

import cv2
import numpy as np
import pytest

from crowdsense.api.services.media_store import MediaNotFound, MediaStore, is_safe_media_id
from crowdsense.core.errors import InvalidSource
from crowdsense.core.types import MediaKind
from crowdsense.core.video_sources.base import ImageSource, VideoFileSource


def _make_dummy_video(path: Path, frames: int = 10, size=(64, 48)):
    fourcc = cv2.VideoWriter_fourcc(*"MJPG")
    writer = cv2.VideoWriter(str(path), fourcc, 5.0, size)
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot write MJPG video on this platform")
    for i in range(frames):
        writer.write(np.full((size[1], size[0], 3), i * 20, dtype=np.uint8))
    writer.release()


def test_image_source_rejects_empty_and_undecodable_input(tmp_path: Path):
    with pytest.raises(InvalidSource):
        ImageSource(np.zeros((0, 0, 3), dtype=np.uint8))
    with pytest.raises(InvalidSource):
        ImageSource.from_bytes(b"")
    with pytest.raises(InvalidSource):
        ImageSource.from_bytes(b"garbage")
    with pytest.raises(InvalidSource):
        ImageSource.from_path(tmp_path / "missing.png")


def test_image_source_roundtrip(tmp_path: Path):
    path = tmp_path / "img.png"
    cv2.imwrite(str(path), np.full((30, 40, 3), 7, dtype=np.uint8))
    with ImageSource.from_path(path) as source:
        assert source.frame_size == (40, 30)
        assert source.duration is None
        asyncio.run(source.seek(3.0))
        assert source.read().shape == (30, 40, 3)


def test_video_file_source(tmp_path: Path):
    path = tmp_path / "clip.avi"
    _make_dummy_video(path)
    with VideoFileSource(path) as source:
        assert source.frame_size == (64, 48)
        if source.duration is not None:
            assert source.duration == pytest.approx(2.0, rel=0.2)
        asyncio.run(source.seek(0.0))
        frame = source.read()
        if frame is None:
            pytest.skip("OpenCV backend cannot read generated video on this platform")
        assert frame.shape[:2] == (48, 64)


def test_video_file_source_missing(tmp_path: Path):
    with pytest.raises(InvalidSource):
        VideoFileSource(tmp_path / "missing.mp4")


def test_media_store_lookup(tmp_path: Path):
    (tmp_path / "image").mkdir()
    cv2.imwrite(str(tmp_path / "image" / "plaza.png"), np.zeros((10, 10, 3), dtype=np.uint8))
    store = MediaStore(tmp_path)
    assert store.find("plaza", MediaKind.IMAGE).name == "plaza.png"
    with store("plaza", MediaKind.IMAGE) as source:
        assert source.frame_size == (10, 10)
    with pytest.raises(MediaNotFound):
        store.find("plaza", MediaKind.VIDEO)
    with pytest.raises(MediaNotFound):
        store.find("absent", MediaKind.IMAGE)
    with pytest.raises(InvalidSource):
        store.find("../plaza", MediaKind.IMAGE)


def test_safe_media_ids():
    assert is_safe_media_id("clip-01")
    assert not is_safe_media_id("")
    assert not is_safe_media_id("..")
    assert not is_safe_media_id("a/b")
    assert not is_safe_media_id("a\\b")
