"""
api/routes/stats.py

GET /api/stats — cycle counters, current state and diagnostic metrics
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ...metrics import METRICS
from ...service import TrafficService
from ..serializers import StatsResponse

router = APIRouter(prefix="/stats", tags=["stats"])


def _get_service() -> TrafficService:
    from ..main import get_service
    return get_service()


@router.get("", response_model=StatsResponse)
async def get_stats(
    service: TrafficService = Depends(_get_service),
) -> StatsResponse:
    """Return a snapshot of the orchestrator's counters."""
    report = service.report()
    return StatsResponse(
        iteration_count=report.iteration_count,
        written_record_count=report.written_record_count,
        average_records=report.average_records,
        state=service.state.value,
        running=service.running,
        pipeline_stats=METRICS.as_dict(),
    )
