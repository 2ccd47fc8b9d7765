"""Pydantic schemas for API request/response validation."""
from .monitor import (
    MonitorCreate,
    MonitorUpdate,
    MonitorView,
    MonitorDetail,
    MonitorList,
    MonitorTestRequest,
    MonitorTestResponse,
    Heartbeat,
    ToggleResponse,
)
from .status import HealthResponse

__all__ = [
    "MonitorCreate",
    "MonitorUpdate",
    "MonitorView",
    "MonitorDetail",
    "MonitorList",
    "MonitorTestRequest",
    "MonitorTestResponse",
    "Heartbeat",
    "ToggleResponse",
    "HealthResponse",
]
