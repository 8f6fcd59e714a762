"""Crowd analysis endpoints.

- `GET /media/{kind}/{media_id}`: cached analysis of stored (or demo) media
- `DELETE /media/{kind}/{media_id}`: drop the cached analysis
- `POST /analyze/image`: analyze an uploaded image (never cached)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from crowdsense.api.schemas.models import AnalysisSchema
from crowdsense.api.services.media_store import MediaNotFound
from crowdsense.api.services.state import analyze_with_retry, get_service, get_settings
from crowdsense.core.config.settings import CrowdSettings
from crowdsense.core.errors import (
    InvalidSource,
    ModelUnavailable,
    SimulatedDetectionFailure,
)
from crowdsense.core.service import CrowdAnalysisService
from crowdsense.core.types import AnalysisResult, MediaKey, MediaKind
from crowdsense.core.video_sources.base import ImageSource

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analysis"])


async def _run(
    compute: Callable[[], Awaitable[AnalysisResult]], settings: CrowdSettings
) -> AnalysisSchema:
    """Run an analysis with retries and map pipeline errors to HTTP errors."""

    try:
        result = await analyze_with_retry(
            compute, retries=settings.failure_retries, backoff_s=settings.retry_backoff_s
        )
    except InvalidSource as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except MediaNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (ModelUnavailable, SimulatedDetectionFailure) as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Unexpected analysis failure")
        raise HTTPException(status_code=500, detail="Analysis failed") from exc
    return AnalysisSchema.from_result(result)


@router.get("/media/{kind}/{media_id}", response_model=AnalysisSchema)
async def analyze_media(
    kind: MediaKind,
    media_id: str,
    source_key: str | None = Query(default=None),
    service: CrowdAnalysisService = Depends(get_service),
    settings: CrowdSettings = Depends(get_settings),
) -> AnalysisSchema:
    """Return the analysis of a stored media item, computing it on first request."""

    return await _run(lambda: service.analyze_media(media_id, kind, source_key), settings)


@router.delete("/media/{kind}/{media_id}")
def invalidate_media(
    kind: MediaKind,
    media_id: str,
    service: CrowdAnalysisService = Depends(get_service),
) -> dict[str, bool]:
    """Forget the cached analysis so the next request recomputes it."""

    removed = service.cache.invalidate(MediaKey(kind=kind, media_id=media_id))
    return {"removed": removed}


@router.post("/analyze/image", response_model=AnalysisSchema)
async def analyze_image(
    file: UploadFile = File(...),
    service: CrowdAnalysisService = Depends(get_service),
    settings: CrowdSettings = Depends(get_settings),
) -> AnalysisSchema:
    """Analyze an uploaded image (JPEG/PNG/...) with the configured models."""

    data = await file.read()
    try:
        source = ImageSource.from_bytes(data)
    except InvalidSource as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    frame = source.read()
    if frame is None:
        raise HTTPException(status_code=422, detail="image is empty")
    return await _run(lambda: service.analyze_image(frame), settings)
