"""Monitor schemas for API."""
from typing import List, Optional
from pydantic import BaseModel, Field

from ..models.history import Incident


class MonitorCreate(BaseModel):
    """Schema for creating a new monitor."""
    type: str = Field(..., pattern="^(http|tcp|ping)$")
    name: str = Field(..., min_length=1, max_length=255)
    target: str = Field(..., min_length=1)
    group_id: str = ""
    interval: Optional[int] = None  # defaults to system.check_interval
    timeout: int = 5
    max_retries: int = 3
    retry_interval: int = 0
    reminder_interval: int = 0
    ignore_tls: bool = False
    enabled: Optional[bool] = None
    notifier_ids: List[str] = Field(default_factory=list)


class MonitorUpdate(BaseModel):
    """Schema for updating a monitor. Unset fields keep their value."""
    type: Optional[str] = Field(None, pattern="^(http|tcp|ping)$")
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    target: Optional[str] = Field(None, min_length=1)
    group_id: Optional[str] = None
    interval: Optional[int] = None
    timeout: Optional[int] = None
    max_retries: Optional[int] = None
    retry_interval: Optional[int] = None
    reminder_interval: Optional[int] = None
    ignore_tls: Optional[bool] = None
    enabled: Optional[bool] = None
    notifier_ids: Optional[List[str]] = None


class Heartbeat(BaseModel):
    """A point in the latency history for graphing."""
    t: int
    v: int
    up: bool


class MonitorView(BaseModel):
    """Monitor with its current status and recent heartbeats."""
    id: str
    name: str
    type: str
    target: str
    interval: int
    enabled: bool
    group_id: str = ""
    group_name: str = ""
    is_up: bool = True
    has_history: bool = False
    uptime_24h: float = 0.0
    uptime_7d: float = 0.0
    uptime_30d: float = 0.0
    last_check: int = 0
    response_time: int = 0  # most recent latency in ms
    heartbeats: List[Heartbeat] = Field(default_factory=list)


class MonitorDetail(MonitorView):
    """Single monitor view with thresholds and incidents."""
    timeout: int
    max_retries: int
    retry_interval: int
    reminder_interval: int
    ignore_tls: bool
    notifier_ids: List[str] = Field(default_factory=list)
    incidents: List[Incident] = Field(default_factory=list)


class MonitorList(BaseModel):
    """All monitors."""
    monitors: List[MonitorView]
    total: int


class MonitorTestRequest(BaseModel):
    """Request to run a one-off probe."""
    type: str = Field(..., pattern="^(http|tcp|ping)$")
    target: str = Field(..., min_length=1)
    timeout: int = Field(default=5, ge=1, le=60)
    ignore_tls: bool = False


class MonitorTestResponse(BaseModel):
    """Response from testing a monitor."""
    up: bool
    response_time_ms: int
    error: Optional[str] = None


class ToggleResponse(BaseModel):
    enabled: bool
