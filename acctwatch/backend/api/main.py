"""
api/main.py

Read-only status API for the traffic service.

Routes:
  GET /health      — liveness
  GET /api/stats   — CycleReport + METRICS snapshot
  GET /api/config  — effective configuration
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..config import Settings
from .routes import config as config_router
from .routes import stats as stats_router

logger = logging.getLogger(__name__)

_service = None
_settings: Settings | None = None


def set_service(service) -> None:
    global _service
    _service = service


def get_service():
    if _service is None:
        raise RuntimeError("Service not initialised — call set_service() first")
    return _service


def set_settings(cfg: Settings) -> None:
    global _settings
    _settings = cfg


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Status API startup")
        yield
        logger.info("Status API shutdown")

    app = FastAPI(
        title="AcctWatch — Router Traffic Accounting",
        version="1.0.0",
        description="Per-address traffic counters collected from router IP accounting",
        lifespan=lifespan,
    )

    app.include_router(stats_router.router,  prefix="/api")
    app.include_router(config_router.router, prefix="/api")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app
