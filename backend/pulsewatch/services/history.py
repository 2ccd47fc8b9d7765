"""History store - latency ring buffers, uptime figures and incidents.

All persisted monitoring state lives here. It is kept in memory, mutated only
through the record_* methods, and written to two documents on dump():

- history.json: uptime figures and latency points per monitor
- incidents.json: incident list per monitor

Both are rewritten wholesale through a temp file + rename, so a crash during a
dump leaves the previous files intact. Resolved incidents older than the
retention window are dropped at dump time only; memory keeps everything until
then.
"""
import json
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from ..models.history import (
    HistoryData,
    Incident,
    IncidentsData,
    LatencyPoint,
    MonitorHistory,
)
from ..utils.fileio import atomic_write_text, read_text
from ..utils.migrations import CURRENT_HISTORY_VERSION, migrate_history

logger = logging.getLogger(__name__)

INCIDENT_RETENTION_SECONDS = 30 * 24 * 3600

UPTIME_WINDOWS = {
    "uptime_24h": 24 * 3600,
    "uptime_7d": 7 * 24 * 3600,
    "uptime_30d": 30 * 24 * 3600,
}


class HistoryLoadError(Exception):
    """Raised when history.json exists but cannot be read."""


def calc_uptime(points: List[LatencyPoint], now: int, window_seconds: int) -> float:
    """Percentage of up points within the window, rounded to 2 decimals.

    An empty window counts as fully up.
    """
    cutoff = now - window_seconds
    total = 0
    up = 0
    for point in points:
        if point.time >= cutoff:
            total += 1
            if point.up:
                up += 1
    if total == 0:
        return 100.0
    return round(up / total * 100.0, 2)


def evict_incidents(incidents: List[Incident], now: int) -> List[Incident]:
    """Drop resolved incidents that started before the retention window."""
    cutoff = now - INCIDENT_RETENTION_SECONDS
    return [inc for inc in incidents if inc.is_open or inc.started_at >= cutoff]


class HistoryStore:
    """In-memory history with periodic and event-driven persistence."""

    def __init__(
        self,
        history_path: str,
        incidents_path: str,
        max_history_points: int,
        clock: Callable[[], float] = time.time,
    ):
        self.history_path = history_path
        self.incidents_path = incidents_path
        self._max_points = max_history_points
        self._clock = clock

        # Guards _data and _incidents
        self._lock = threading.RLock()
        # Serialises whole dumps so an older snapshot never overwrites a newer one
        self._dump_lock = threading.Lock()

        self._data = HistoryData()
        self._incidents: Dict[str, List[Incident]] = {}

        self._load()

    def _now(self) -> int:
        return int(self._clock())

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self) -> None:
        raw = read_text(self.history_path)
        if raw is None:
            logger.info(f"History file not found, starting fresh: {self.history_path}")
        else:
            try:
                self._data = HistoryData.model_validate(migrate_history(json.loads(raw)))
            except (json.JSONDecodeError, ValidationError, ValueError, AttributeError) as e:
                raise HistoryLoadError(f"parse history JSON {self.history_path}: {e}") from e

        raw = read_text(self.incidents_path)
        if raw is None:
            logger.info(f"Incidents file not found, migrating from history: {self.incidents_path}")
            self._migrate_incidents_from_history()
            return

        try:
            incidents = IncidentsData.model_validate(migrate_history(json.loads(raw)))
        except (json.JSONDecodeError, ValidationError, ValueError, AttributeError) as e:
            logger.warning(f"Failed to load incidents file, migrating from history: {e}")
            self._migrate_incidents_from_history()
            return

        self._incidents = incidents.monitors
        # Older history files may still carry embedded incidents
        for h in self._data.monitors.values():
            h.incidents = []

    def _migrate_incidents_from_history(self) -> None:
        """Move incidents embedded in legacy history.json entries into the incident store."""
        for monitor_id, h in self._data.monitors.items():
            if h.incidents:
                self._incidents[monitor_id] = h.incidents
                h.incidents = []

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _ensure_monitor(self, monitor_id: str) -> MonitorHistory:
        h = self._data.monitors.get(monitor_id)
        if h is None:
            h = MonitorHistory()
            self._data.monitors[monitor_id] = h
        self._incidents.setdefault(monitor_id, [])
        return h

    def set_max_history_points(self, max_points: int) -> None:
        """Change the ring buffer size; applied on the next recorded probe."""
        with self._lock:
            self._max_points = max_points

    def record_probe(self, monitor_id: str, latency_ms: int, up: bool) -> None:
        """Append a latency point, trim the ring buffer and refresh uptime figures."""
        with self._lock:
            now = self._now()
            h = self._ensure_monitor(monitor_id)
            h.latency_history.append(LatencyPoint(time=now, latency=latency_ms, up=up))

            excess = len(h.latency_history) - self._max_points
            if excess > 0:
                del h.latency_history[:excess]

            h.last_check_time = now
            h.is_up = up
            for field, window in UPTIME_WINDOWS.items():
                setattr(h, field, calc_uptime(h.latency_history, now, window))

    def record_down(self, monitor_id: str, reason: str) -> None:
        """Open a new incident."""
        with self._lock:
            h = self._ensure_monitor(monitor_id)
            h.is_up = False
            self._incidents[monitor_id].append(
                Incident(type="down", started_at=self._now(), reason=reason)
            )

    def record_up(self, monitor_id: str) -> None:
        """Resolve the most recently opened unresolved incident."""
        with self._lock:
            h = self._ensure_monitor(monitor_id)
            h.is_up = True
            now = self._now()
            incidents = self._incidents[monitor_id]
            for i in range(len(incidents) - 1, -1, -1):
                if incidents[i].is_open:
                    incidents[i] = incidents[i].model_copy(
                        update={"resolved_at": now, "duration": now - incidents[i].started_at}
                    )
                    break

    def remove_monitor(self, monitor_id: str) -> None:
        """Discard all history and incidents for a deleted monitor."""
        with self._lock:
            self._data.monitors.pop(monitor_id, None)
            self._incidents.pop(monitor_id, None)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _snapshot(self, monitor_id: str, h: MonitorHistory) -> MonitorHistory:
        # Points and incidents are frozen, so copying the lists is enough.
        # Caller holds _lock.
        return h.model_copy(
            update={
                "latency_history": list(h.latency_history),
                "incidents": list(self._incidents.get(monitor_id, [])),
            }
        )

    def get_monitor(self, monitor_id: str) -> Optional[MonitorHistory]:
        """Copy of one monitor's history with incidents merged in, or None."""
        with self._lock:
            h = self._data.monitors.get(monitor_id)
            if h is None:
                return None
            return self._snapshot(monitor_id, h)

    def get_all(self) -> Dict[str, MonitorHistory]:
        """Copies of every monitor's history with incidents merged in."""
        with self._lock:
            return {mid: self._snapshot(mid, h) for mid, h in self._data.monitors.items()}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def dump(self) -> None:
        """Atomically write history.json and incidents.json.

        Only the list copies are taken under the store lock; serialisation and
        file writes happen after it is released so probes are not held up.

        Raises:
            OSError: If either file cannot be written. In-memory state is kept
                so the next dump can retry.
        """
        with self._dump_lock:
            with self._lock:
                now = self._now()
                monitors = {
                    mid: h.model_copy(update={"latency_history": list(h.latency_history), "incidents": []})
                    for mid, h in self._data.monitors.items()
                }
                incident_lists = {mid: list(incs) for mid, incs in self._incidents.items()}
                self._data.last_dump_time = now

            history = HistoryData(version=CURRENT_HISTORY_VERSION, last_dump_time=now, monitors=monitors)
            incidents = IncidentsData(version=CURRENT_HISTORY_VERSION, last_dump_time=now)
            for mid, incs in incident_lists.items():
                kept = evict_incidents(incs, now)
                if kept:
                    incidents.monitors[mid] = kept

            history_doc = history.model_dump(mode="json", by_alias=True)
            for entry in history_doc["monitors"].values():
                entry.pop("incidents", None)

            atomic_write_text(self.history_path, json.dumps(history_doc, indent=2))
            atomic_write_text(self.incidents_path, incidents.model_dump_json(indent=2))

        logger.debug(f"History dumped ({len(history.monitors)} monitors)")
