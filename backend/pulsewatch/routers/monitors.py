"""Monitor API endpoints - status views and config edits."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from ..engine import MonitoringEngine, get_engine
from ..models.history import MonitorHistory
from ..models.monitor import Monitor
from ..models.settings import AppConfig, ConfigValidationError, generate_id
from ..schemas.monitor import (
    Heartbeat,
    MonitorCreate,
    MonitorDetail,
    MonitorList,
    MonitorTestRequest,
    MonitorTestResponse,
    MonitorUpdate,
    MonitorView,
    ToggleResponse,
)
from ..services.checker import checker_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/monitors", tags=["monitors"])

DEFAULT_POINTS = 90
MAX_POINTS = 200


def clamp_points(points: Optional[int]) -> int:
    """Heartbeat count for views: default 90, clamped to [1, 200]."""
    if points is None or points <= 0:
        return DEFAULT_POINTS
    return min(points, MAX_POINTS)


def _view_fields(monitor: Monitor, cfg: AppConfig, history: Optional[MonitorHistory], points: int) -> dict:
    group = cfg.contact_groups.get(monitor.group_id) if monitor.group_id else None
    fields = {
        "id": monitor.id,
        "name": monitor.name,
        "type": monitor.type,
        "target": monitor.target,
        "interval": monitor.interval,
        "enabled": monitor.is_enabled,
        "group_id": monitor.group_id,
        "group_name": group.name if group else "",
    }
    if history is not None:
        tail = history.latency_history[-points:]
        fields.update(
            has_history=True,
            is_up=history.is_up,
            uptime_24h=round(history.uptime_24h, 2),
            uptime_7d=round(history.uptime_7d, 2),
            uptime_30d=round(history.uptime_30d, 2),
            last_check=history.last_check_time,
            response_time=history.latency_history[-1].latency if history.latency_history else 0,
            heartbeats=[Heartbeat(t=p.time, v=p.latency, up=p.up) for p in tail],
        )
    return fields


def build_view(monitor: Monitor, cfg: AppConfig, history: Optional[MonitorHistory], points: int) -> MonitorView:
    return MonitorView(**_view_fields(monitor, cfg, history, points))


def build_detail(monitor: Monitor, cfg: AppConfig, history: Optional[MonitorHistory], points: int) -> MonitorDetail:
    return MonitorDetail(
        **_view_fields(monitor, cfg, history, points),
        timeout=monitor.timeout,
        max_retries=monitor.max_retries,
        retry_interval=monitor.retry_interval,
        reminder_interval=monitor.reminder_interval,
        ignore_tls=monitor.ignore_tls,
        notifier_ids=list(monitor.notifier_ids),
        incidents=history.incidents if history else [],
    )


def _save(engine: MonitoringEngine, cfg: AppConfig) -> AppConfig:
    """Save a config, mapping failures to HTTP errors."""
    try:
        return engine.config_manager.save(cfg)
    except ConfigValidationError as e:
        raise HTTPException(status_code=422, detail={"errors": e.errors})
    except OSError as e:
        logger.error(f"Failed to save config: {e}")
        raise HTTPException(status_code=500, detail="Failed to save config")


def _find_index(cfg: AppConfig, monitor_id: str) -> int:
    for i, monitor in enumerate(cfg.monitors):
        if monitor.id == monitor_id:
            return i
    raise HTTPException(status_code=404, detail="Monitor not found")


@router.get("", response_model=MonitorList)
async def list_monitors(
    points: Optional[int] = Query(None),
    engine: MonitoringEngine = Depends(get_engine),
):
    """List all monitors with their current status."""
    cfg = engine.config_manager.get_snapshot()
    histories = engine.history.get_all()
    n = clamp_points(points)
    views = [build_view(m, cfg, histories.get(m.id), n) for m in cfg.monitors]
    return MonitorList(monitors=views, total=len(cfg.monitors))


@router.get("/{monitor_id}", response_model=MonitorDetail)
async def get_monitor(
    monitor_id: str,
    points: Optional[int] = Query(None),
    engine: MonitoringEngine = Depends(get_engine),
):
    """Get a single monitor with incidents."""
    cfg = engine.config_manager.get_snapshot()
    monitor = cfg.get_monitor(monitor_id)
    if monitor is None:
        raise HTTPException(status_code=404, detail="Monitor not found")
    return build_detail(monitor, cfg, engine.history.get_monitor(monitor_id), clamp_points(points))


@router.post("", response_model=MonitorDetail, status_code=201)
async def create_monitor(payload: MonitorCreate, engine: MonitoringEngine = Depends(get_engine)):
    """Create a new monitor."""
    cfg = engine.config_manager.get_snapshot()
    if len(cfg.monitors) >= cfg.system.max_monitors:
        raise HTTPException(status_code=400, detail="Maximum number of monitors reached")

    data = payload.model_dump()
    if data["interval"] is None:
        data["interval"] = cfg.system.check_interval
    monitor = Monitor(id=generate_id(), **data)
    cfg.monitors.append(monitor)

    cfg = _save(engine, cfg)
    logger.info(f"Monitor created: {monitor.name} ({monitor.id})")
    return build_detail(monitor, cfg, None, DEFAULT_POINTS)


@router.put("/{monitor_id}", response_model=MonitorDetail)
async def update_monitor(
    monitor_id: str,
    payload: MonitorUpdate,
    engine: MonitoringEngine = Depends(get_engine),
):
    """Update a monitor. The scheduler restarts its probe loop."""
    cfg = engine.config_manager.get_snapshot()
    idx = _find_index(cfg, monitor_id)

    # An explicit null means "leave unchanged", same as an omitted field
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    try:
        updated = Monitor.model_validate({**cfg.monitors[idx].model_dump(), **changes})
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={"errors": [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]},
        )
    cfg.monitors[idx] = updated

    cfg = _save(engine, cfg)
    logger.info(f"Monitor updated: {updated.name} ({monitor_id})")
    return build_detail(cfg.monitors[idx], cfg, engine.history.get_monitor(monitor_id), DEFAULT_POINTS)


@router.delete("/{monitor_id}", status_code=204)
async def delete_monitor(monitor_id: str, engine: MonitoringEngine = Depends(get_engine)):
    """Delete a monitor and its history."""
    cfg = engine.config_manager.get_snapshot()
    idx = _find_index(cfg, monitor_id)
    del cfg.monitors[idx]

    _save(engine, cfg)
    engine.history.remove_monitor(monitor_id)
    logger.info(f"Monitor deleted: {monitor_id}")


@router.post("/{monitor_id}/toggle", response_model=ToggleResponse)
async def toggle_monitor(monitor_id: str, engine: MonitoringEngine = Depends(get_engine)):
    """Enable or disable a monitor."""
    cfg = engine.config_manager.get_snapshot()
    idx = _find_index(cfg, monitor_id)

    enabled = not cfg.monitors[idx].is_enabled
    cfg.monitors[idx] = cfg.monitors[idx].model_copy(update={"enabled": enabled})

    _save(engine, cfg)
    logger.info(f"Monitor toggled: {monitor_id} enabled={enabled}")
    return ToggleResponse(enabled=enabled)


@router.post("/test", response_model=MonitorTestResponse)
async def test_monitor(payload: MonitorTestRequest):
    """Run a one-off probe without saving anything."""
    result = await checker_service.check(
        payload.type,
        payload.target,
        payload.timeout,
        ignore_tls=payload.ignore_tls,
    )
    return MonitorTestResponse(
        up=result.up,
        response_time_ms=result.latency_ms,
        error=result.error or None,
    )
