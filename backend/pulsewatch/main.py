"""Main FastAPI application - monitoring engine plus status API."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import settings
from .engine import MonitoringEngine, create_engine, start_engine, stop_engine
from .models.settings import DEFAULT_LOG_LEVEL
from .routers import monitors_router, status_router
from .utils.logs import configure_logging, set_log_level

# Configure logging; config.json may lower or raise the level once loaded
configure_logging(settings.log_level or DEFAULT_LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    engine: Optional[MonitoringEngine] = getattr(app.state, "engine", None)
    if engine is None:
        engine = create_engine(manage_log_level=True)
        app.state.engine = engine

    cfg = engine.config_manager.get_snapshot()
    if not settings.log_level:
        set_log_level(cfg.system.log_level)

    logger.info(
        f"Starting PulseWatch {__version__} with {len(cfg.monitors)} monitors, "
        f"{len(cfg.notifiers)} notifiers"
    )
    start_engine(engine)
    logger.info("Scheduler started")

    yield

    await stop_engine(engine)
    logger.info("Shutdown complete")


def create_app(engine: Optional[MonitoringEngine] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Passing an engine skips loading from the data directory.
    """
    app = FastAPI(
        title="PulseWatch",
        description="Uptime monitoring for HTTP, TCP and ping targets",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(monitors_router)
    app.include_router(status_router)

    if engine is not None:
        app.state.engine = engine

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.web_host, port=settings.web_port)
