"""Health schemas."""
from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Process health summary."""
    status: str
    version: str
    uptime_seconds: int
    monitor_count: int
    running_monitors: int
