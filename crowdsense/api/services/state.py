"""In-process state for settings and the analysis service.

FastAPI routes use this module to access (and hot-reload) the singleton
`CrowdAnalysisService`. Reloading settings rebuilds the service, which also
drops every cached result.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from threading import RLock

from crowdsense.api.services.media_store import MediaStore
from crowdsense.core.analytics.fusion import CrossModelFusion
from crowdsense.core.analytics.pipeline import DetectionPipeline
from crowdsense.core.config.settings import (
    CrowdSettings,
    dedup_from_settings,
    fusion_from_settings,
    hotspots_from_settings,
    load_settings,
    options_from_settings,
    settings_to_dict,
    video_options_from_settings,
)
from crowdsense.core.detectors.yolo import ModelRegistry
from crowdsense.core.errors import SimulatedDetectionFailure
from crowdsense.core.service import CrowdAnalysisService
from crowdsense.core.types import AnalysisResult

logger = logging.getLogger(__name__)

_settings: CrowdSettings | None = None
_service: CrowdAnalysisService | None = None
_lock = RLock()


def get_settings() -> CrowdSettings:
    """Return cached settings, loading them on first use."""

    global _settings
    with _lock:
        if _settings is None:
            _settings = load_settings()
    return _settings


def build_service(settings: CrowdSettings) -> CrowdAnalysisService:
    """Wire a service (lazy YOLO models, media store) from `settings`."""

    registry = ModelRegistry(settings.detector_model, settings.pose_model)
    pipeline = DetectionPipeline(
        registry.detector,
        registry.pose_estimator,
        fusion=CrossModelFusion(fusion_from_settings(settings)),
        dedup_config=dedup_from_settings(settings),
        hotspot_config=hotspots_from_settings(settings),
    )
    return CrowdAnalysisService(
        pipeline=pipeline,
        resolver=MediaStore(settings.media_dir),
        image_options=options_from_settings(settings),
        video_options=video_options_from_settings(settings),
        demo_mode=settings.demo_mode,
    )


def reload_settings(data: dict | None = None) -> CrowdSettings:
    """Reload settings and rebuild the service.

    Args:
        data: Optional patch dict merged into the loaded settings.
    """

    global _settings, _service
    with _lock:
        base = load_settings()
        if data:
            settings = CrowdSettings(**{**settings_to_dict(base), **data})
        else:
            settings = base
        service = build_service(settings)
        _settings, _service = settings, service
    return settings


def get_service() -> CrowdAnalysisService:
    """Return the singleton analysis service, creating it if needed."""

    global _service
    with _lock:
        if _service is None:
            _service = build_service(get_settings())
    return _service


def reset_state() -> None:
    """Discard the cached settings and service (next access reloads both)."""

    global _settings, _service
    with _lock:
        _settings = None
        _service = None


async def analyze_with_retry(
    compute: Callable[[], Awaitable[AnalysisResult]],
    retries: int = 2,
    backoff_s: float = 0.5,
) -> AnalysisResult:
    """Await `compute`, retrying `SimulatedDetectionFailure` up to `retries` times.

    Attempt `n` (1-based) is followed by a `backoff_s * n` second sleep. Any
    other error propagates immediately.
    """

    attempt = 0
    while True:
        try:
            return await compute()
        except SimulatedDetectionFailure:
            attempt += 1
            if attempt > retries:
                raise
            logger.warning("Detection failed (attempt %d/%d); retrying", attempt, retries + 1)
            await asyncio.sleep(backoff_s * attempt)
