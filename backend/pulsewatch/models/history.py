"""History models - latency points, incidents and the persisted documents."""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..utils.migrations import CURRENT_HISTORY_VERSION


class LatencyPoint(BaseModel):
    """A single probe outcome. Stored compactly as {"t", "v", "up"}."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    time: int = Field(alias="t")  # unix seconds
    latency: int = Field(alias="v")  # milliseconds
    up: bool


class Incident(BaseModel):
    """A DOWN period. Open while resolved_at is None."""

    model_config = ConfigDict(frozen=True)

    type: str = "down"
    started_at: int
    resolved_at: Optional[int] = None
    duration: int = 0  # seconds, set on resolution
    reason: str = ""

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None


class MonitorHistory(BaseModel):
    """Persisted state for one monitor.

    incidents is only filled in on copies handed out by the history store;
    the incident list is persisted in its own document.
    """
    uptime_24h: float = 100.0
    uptime_7d: float = 100.0
    uptime_30d: float = 100.0
    latency_history: List[LatencyPoint] = Field(default_factory=list)
    incidents: List[Incident] = Field(default_factory=list)
    last_check_time: int = 0
    is_up: bool = True


class HistoryData(BaseModel):
    """Root of history.json."""
    version: int = CURRENT_HISTORY_VERSION
    last_dump_time: int = 0
    monitors: Dict[str, MonitorHistory] = Field(default_factory=dict)


class IncidentsData(BaseModel):
    """Root of incidents.json."""
    version: int = CURRENT_HISTORY_VERSION
    last_dump_time: int = 0
    monitors: Dict[str, List[Incident]] = Field(default_factory=dict)
