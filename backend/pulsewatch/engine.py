"""Monitoring engine setup and lifecycle.

Wires the config manager, history store, notification router, analyzer and
scheduler together, and exposes the assembled engine to API routes.
"""
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request

from .config import get_config_path, get_history_path, get_incidents_path, settings
from .services.analyzer import Analyzer
from .services.config_manager import ConfigManager
from .services.history import HistoryStore
from .services.notifier import NotificationRouter
from .services.scheduler import SchedulerService

logger = logging.getLogger(__name__)


@dataclass
class MonitoringEngine:
    """All long-lived services of a running instance."""
    config_manager: ConfigManager
    history: HistoryStore
    router: NotificationRouter
    analyzer: Analyzer
    scheduler: SchedulerService
    started_at: float = field(default_factory=time.time)


def create_engine(
    config_path: Optional[str] = None,
    history_path: Optional[str] = None,
    incidents_path: Optional[str] = None,
    manage_log_level: bool = False,
) -> MonitoringEngine:
    """Load config and history from disk and build the engine (not started)."""
    config_path = config_path or get_config_path()
    history_path = history_path or get_history_path()
    incidents_path = incidents_path or get_incidents_path()

    for path in (config_path, history_path, incidents_path):
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    config_manager = ConfigManager(config_path)
    cfg = config_manager.get_snapshot()

    history = HistoryStore(history_path, incidents_path, cfg.system.max_history_points)
    router = NotificationRouter(config_manager)
    analyzer = Analyzer(history, router)
    scheduler = SchedulerService(
        config_manager,
        analyzer,
        history,
        manage_log_level=manage_log_level and not settings.log_level,
    )
    return MonitoringEngine(
        config_manager=config_manager,
        history=history,
        router=router,
        analyzer=analyzer,
        scheduler=scheduler,
    )


def start_engine(engine: MonitoringEngine):
    """Start probing. Must run inside the event loop."""
    engine.started_at = time.time()
    engine.scheduler.start()


async def stop_engine(engine: MonitoringEngine):
    """Stop all loops, flush pending alerts and write a final dump."""
    await engine.scheduler.stop()
    await engine.analyzer.drain()
    try:
        engine.history.dump()
    except OSError as e:
        logger.error(f"Failed to dump history on shutdown: {e}")


def get_engine(request: Request) -> MonitoringEngine:
    """Dependency to get the running engine."""
    return request.app.state.engine
