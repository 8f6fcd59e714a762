"""Configuration endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from crowdsense.api.schemas.models import ConfigSchema
from crowdsense.api.services.state import get_settings, reload_settings
from crowdsense.core.config.settings import settings_to_dict

router = APIRouter()


@router.get("/config", response_model=ConfigSchema)
def get_config() -> ConfigSchema:
    """Return the current effective configuration."""

    settings = get_settings()
    return ConfigSchema(**settings_to_dict(settings))


@router.post("/config", response_model=ConfigSchema)
def update_config(cfg: ConfigSchema) -> ConfigSchema:
    """Update in-memory settings and rebuild the analysis service.

    This endpoint updates runtime configuration only (and clears the result
    cache). Persist configuration via environment variables or the YAML
    config file.
    """

    try:
        settings = reload_settings(cfg.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return ConfigSchema(**settings_to_dict(settings))
