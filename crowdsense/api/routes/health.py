"""Health check endpoints."""

from fastapi import APIRouter, Depends

from crowdsense.api.services.state import get_settings
from crowdsense.core.config.settings import CrowdSettings

router = APIRouter()


@router.get("/health")
def health(settings: CrowdSettings = Depends(get_settings)) -> dict[str, str]:
    """Lightweight health endpoint used by containers and dev tooling.

    `mode` tells whether stored media are served from the models or from
    seeded demo results.
    """

    return {"status": "ok", "mode": "demo" if settings.demo_mode else "models"}
