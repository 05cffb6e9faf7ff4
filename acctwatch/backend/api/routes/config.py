"""
api/routes/config.py

GET /api/config — effective runtime configuration (credentials omitted)
"""

from __future__ import annotations

from fastapi import APIRouter

from ...config import Settings
from ..serializers import ConfigResponse

router = APIRouter(prefix="/config", tags=["config"])


def _get_settings() -> Settings:
    from ..main import get_settings
    return get_settings()


@router.get("", response_model=ConfigResponse)
async def read_config() -> ConfigResponse:
    cfg = _get_settings()
    return ConfigResponse(
        router=cfg.ROUTER_HOST,
        accounting_url=cfg.accounting_url,
        lan_subnets=list(cfg.LAN_SUBNETS),
        poll_interval_seconds=cfg.POLL_INTERVAL_SECONDS,
        max_retries=cfg.MAX_RETRIES,
        influx_url=cfg.INFLUX_URL,
        influx_db=cfg.INFLUX_DB,
    )
