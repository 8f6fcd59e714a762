"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crowdsense.api.routes import analysis, config, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler.

    Drops the analysis service (and its result cache) when the app shuts down.
    """

    from crowdsense.api.services.state import get_settings, reset_state

    settings = get_settings()
    logger.info(
        "CrowdSense API starting (demo_mode=%s, detector=%s, pose=%s)",
        settings.demo_mode,
        settings.detector_model,
        settings.pose_model,
    )
    yield
    reset_state()


app = FastAPI(title="CrowdSense API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(config.router)
app.include_router(analysis.router)


if __name__ == "__main__":
    uvicorn.run("crowdsense.api.main:app", host="0.0.0.0", port=8000, reload=True)
