"""Health endpoint."""
import time

from fastapi import APIRouter, Depends

from .. import __version__
from ..engine import MonitoringEngine, get_engine
from ..schemas.status import HealthResponse

router = APIRouter(tags=["status"])


@router.get("/health", response_model=HealthResponse)
async def health_check(engine: MonitoringEngine = Depends(get_engine)):
    """Liveness and a few counters."""
    cfg = engine.config_manager.get_snapshot()
    return HealthResponse(
        status="ok",
        version=__version__,
        uptime_seconds=int(time.time() - engine.started_at),
        monitor_count=len(cfg.monitors),
        running_monitors=len(engine.scheduler.running_ids()),
    )
