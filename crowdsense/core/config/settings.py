"""Service configuration.

Settings are loaded from YAML defaults and overridden by environment variables
prefixed with `CRW_`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from crowdsense.core.analytics.dedup import DedupConfig
from crowdsense.core.analytics.fusion import FusionConfig
from crowdsense.core.analytics.hotspots import HotspotConfig
from crowdsense.core.analytics.pipeline import DetectionOptions, VideoDetectionOptions


class CrowdSettings(BaseSettings):
    """Runtime configuration loaded from YAML defaults and `CRW_` env overrides."""

    # Per-call detection options (defaults mirror DetectionOptions).
    confidence_threshold: float = 0.35
    enhance_low_light: bool = True
    max_detections: int = 200
    use_multiple_models: bool = True
    min_keypoints: int = 3

    # Video sampling.
    frame_rate: float = 1.0
    max_duration: float = 30.0
    # None derives the sample count from frame_rate * duration.
    sample_frames: int | None = 10

    # Tuning constants for fusion, deduplication and clustering.
    duplicate_iou: float = 0.4
    overlap_iou_low: float = 0.1
    overlap_iou_high: float = 0.5
    match_iou: float = 0.2
    cluster_radius: float = 0.15

    # Models. Small variants keep CPU latency reasonable for uploads.
    detector_model: str = Field("yolo11n.pt")
    pose_model: str = Field("yolo11n-pose.pt")
    # Serve seeded synthetic results from analyze_media instead of running models.
    demo_mode: bool = True
    # Stored media root: one sub-directory per kind (image/, video/, live/).
    media_dir: str = "testdata/media"

    # Retry policy applied by the API around simulated detector faults.
    failure_retries: int = 2
    retry_backoff_s: float = 0.5

    model_config = SettingsConfigDict(env_prefix="CRW_", validate_assignment=True)

    @field_validator("confidence_threshold")
    @classmethod
    def _validate_confidence(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("confidence_threshold must be in (0, 1]")
        return v

    @field_validator("max_detections", "min_keypoints")
    @classmethod
    def _validate_positive_int(cls, v: int) -> int:
        if int(v) <= 0:
            raise ValueError("value must be >= 1")
        return int(v)

    @field_validator("frame_rate", "max_duration")
    @classmethod
    def _validate_positive_float(cls, v: float) -> float:
        if not float(v) > 0.0:
            raise ValueError("value must be > 0")
        return float(v)

    @field_validator("sample_frames")
    @classmethod
    def _validate_sample_frames(cls, v: int | None) -> int | None:
        if v is None:
            return None
        if int(v) <= 0:
            raise ValueError("sample_frames must be >= 1")
        return int(v)

    @field_validator("duplicate_iou", "overlap_iou_low", "overlap_iou_high", "match_iou")
    @classmethod
    def _validate_iou(cls, v: float) -> float:
        if not 0.0 <= float(v) <= 1.0:
            raise ValueError("IoU thresholds must be in [0, 1]")
        return float(v)

    @field_validator("cluster_radius")
    @classmethod
    def _validate_cluster_radius(cls, v: float) -> float:
        if not 0.0 < float(v) <= 1.0:
            raise ValueError("cluster_radius must be in (0, 1]")
        return float(v)

    @field_validator("failure_retries")
    @classmethod
    def _validate_retries(cls, v: int) -> int:
        if int(v) < 0:
            raise ValueError("failure_retries must be >= 0")
        return int(v)

    @field_validator("retry_backoff_s")
    @classmethod
    def _validate_backoff(cls, v: float) -> float:
        if float(v) < 0:
            raise ValueError("retry_backoff_s must be >= 0")
        return float(v)


def settings_to_dict(settings: CrowdSettings) -> dict[str, Any]:
    """Convert settings to a plain dict."""

    return cast(dict[str, Any], settings.model_dump())


def _fields_set(obj: object) -> set[str]:
    """Return the set of fields explicitly provided/overridden on a Pydantic model."""

    return set(getattr(obj, "model_fields_set", set()))


def _config_path() -> Path:
    """Return the YAML configuration path (defaults to config/crowdsense.config.yml)."""

    return Path(os.getenv("CRW_CONFIG", "config/crowdsense.config.yml"))


def load_settings() -> CrowdSettings:
    """Load settings from YAML and environment variables.

    YAML provides defaults; environment variables override.
    """

    data: dict[str, Any] = {}
    path = _config_path()
    if path.exists():
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    env_settings = CrowdSettings()
    env_overrides: dict[str, Any] = {
        name: getattr(env_settings, name) for name in _fields_set(env_settings)
    }

    merged = {**data, **env_overrides}
    return CrowdSettings(**merged)


def options_from_settings(settings: CrowdSettings) -> DetectionOptions:
    """Return the per-image detection options described by `settings`."""

    return DetectionOptions(
        confidence_threshold=settings.confidence_threshold,
        enhance_low_light=settings.enhance_low_light,
        max_detections=settings.max_detections,
        use_multiple_models=settings.use_multiple_models,
        min_keypoints=settings.min_keypoints,
    )


def video_options_from_settings(settings: CrowdSettings) -> VideoDetectionOptions:
    """Return the per-video detection options described by `settings`."""

    base = options_from_settings(settings)
    return VideoDetectionOptions(
        confidence_threshold=base.confidence_threshold,
        enhance_low_light=base.enhance_low_light,
        max_detections=base.max_detections,
        use_multiple_models=base.use_multiple_models,
        min_keypoints=base.min_keypoints,
        frame_rate=settings.frame_rate,
        max_duration=settings.max_duration,
        sample_frames=settings.sample_frames,
    )


def fusion_from_settings(settings: CrowdSettings) -> FusionConfig:
    return FusionConfig(match_iou=settings.match_iou)


def dedup_from_settings(settings: CrowdSettings) -> DedupConfig:
    if settings.overlap_iou_low >= settings.overlap_iou_high:
        raise ValueError("overlap_iou_low must be below overlap_iou_high")
    return DedupConfig(
        duplicate_iou=settings.duplicate_iou,
        overlap_iou_low=settings.overlap_iou_low,
        overlap_iou_high=settings.overlap_iou_high,
    )


def hotspots_from_settings(settings: CrowdSettings) -> HotspotConfig:
    return HotspotConfig(cluster_radius=settings.cluster_radius)
