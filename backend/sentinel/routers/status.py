"""Worker status API."""
from fastapi import APIRouter, Request

from ..schemas.site import WorkerStats

router = APIRouter(prefix="/api/status", tags=["status"])


@router.get("/worker", response_model=WorkerStats)
async def get_worker_stats(request: Request):
    """Scheduler statistics: uptime, probes, ticks, engine restarts."""
    return WorkerStats(**request.app.state.scheduler.stats())
