"""
api/serializers.py

Response models for the read-only status API.
"""

from __future__ import annotations
from pydantic import BaseModel


class StatsResponse(BaseModel):
    iteration_count: int
    written_record_count: int
    average_records: float
    state: str
    running: bool
    pipeline_stats: dict[str, int]


class ConfigResponse(BaseModel):
    router: str
    accounting_url: str
    lan_subnets: list[str]
    poll_interval_seconds: float
    max_retries: int
    influx_url: str
    influx_db: str
