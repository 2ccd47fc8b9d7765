"""Monitor model - items being monitored."""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

MONITOR_TYPES = ("http", "tcp", "ping")


class Monitor(BaseModel):
    """A monitored endpoint - HTTP, TCP or ping check.

    Instances are immutable. Editing a monitor means saving a new config with
    a replacement instance, which the scheduler sees as a changed monitor and
    restarts.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    type: str = "http"  # http, tcp, ping
    target: str = ""  # URL, host:port or hostname
    group_id: str = ""
    interval: int = 0  # seconds, <= 0 uses system.check_interval
    timeout: int = 5  # seconds
    max_retries: int = 3  # consecutive failures before DOWN
    retry_interval: int = 0  # seconds between probes while failing, 0 = off
    reminder_interval: int = 0  # failures between repeated DOWN alerts, 0 = off
    ignore_tls: bool = False
    enabled: Optional[bool] = None  # None counts as enabled
    notifier_ids: List[str] = Field(default_factory=list)

    @property
    def is_enabled(self) -> bool:
        return self.enabled is None or self.enabled

    def effective_interval(self, default_interval: int) -> int:
        """Check interval in seconds, falling back to the system default."""
        return self.interval if self.interval > 0 else default_interval
