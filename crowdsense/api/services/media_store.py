"""Lookup of stored media on the API host.

Media live under `<media_dir>/<kind>/` and are addressed by file stem, so
`GET /media/video/clip-01` opens `<media_dir>/video/clip-01.mp4`. Only plain
basenames are accepted.
"""

from __future__ import annotations

from pathlib import Path

from crowdsense.core.errors import InvalidSource
from crowdsense.core.types import MediaKind
from crowdsense.core.video_sources.base import FrameSource, ImageSource, VideoFileSource

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".bmp", ".webp"}
VIDEO_SUFFIXES = {".mp4", ".mov", ".mkv", ".avi"}


class MediaNotFound(LookupError):
    """No stored media matches the requested id."""


def is_safe_media_id(media_id: str) -> bool:
    """Return True if `media_id` is a plain name (no path separators)."""

    if not media_id or media_id in {".", ".."}:
        return False
    if "/" in media_id or "\\" in media_id:
        return False
    return Path(media_id).name == media_id


class MediaStore:
    """Resolves `(media_id, kind)` pairs to frame sources under a root directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def find(self, media_id: str, kind: MediaKind) -> Path:
        if not is_safe_media_id(media_id):
            raise InvalidSource(f"Invalid media id: {media_id!r}")
        allowed = IMAGE_SUFFIXES if kind is MediaKind.IMAGE else VIDEO_SUFFIXES
        folder = self.root / kind.value
        if folder.is_dir():
            for p in sorted(folder.iterdir()):
                if p.is_file() and p.stem == media_id and p.suffix.lower() in allowed:
                    return p
        raise MediaNotFound(f"{kind.value} media not found: {media_id}")

    def __call__(self, media_id: str, kind: MediaKind) -> FrameSource:
        path = self.find(media_id, kind)
        if kind is MediaKind.IMAGE:
            return ImageSource.from_path(path)
        return VideoFileSource(path)
