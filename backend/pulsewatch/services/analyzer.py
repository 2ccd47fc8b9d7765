"""Analyzer service - flapping control and alert decisions.

Every probe result goes through process(). The raw outcome is always written
to history first; the debounced UP/DOWN state is then updated:

- success: counters reset; a DOWN monitor recovers and an "up" alert is sent
- failure while UP: after max_retries consecutive failures the monitor goes
  DOWN, an incident is opened and a "down" alert is sent
- failure while DOWN: with reminder_interval R > 0 a repeat "down" alert is
  sent every R failures

State transitions trigger an immediate history dump. Alerts are delivered in
background tasks so a slow channel never holds up the probe loop.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from ..models.monitor import Monitor
from .checker import ProbeResult
from .history import HistoryStore
from .notifier import AlertEvent

logger = logging.getLogger(__name__)


@dataclass
class MonitorState:
    """Runtime flapping-control state for one monitor. Not persisted."""
    is_up: bool = True
    fail_count: int = 0
    reminder_count: int = 0  # failures since the last alert while DOWN


@dataclass
class AnalyzeResult:
    """Returned to the scheduler to pick the next probe interval."""
    is_failing: bool
    events: List[AlertEvent] = field(default_factory=list)


class Analyzer:
    """Turns raw probe results into debounced state and alert events."""

    def __init__(self, history: HistoryStore, router, clock: Callable[[], float] = time.time):
        self.history = history
        self.router = router
        self._clock = clock
        self._lock = threading.Lock()
        self._states: Dict[str, MonitorState] = {}
        self._pending: Set[asyncio.Task] = set()

    def _ensure_state(self, monitor_id: str) -> MonitorState:
        state = self._states.get(monitor_id)
        if state is None:
            state = MonitorState()
            self._states[monitor_id] = state
        return state

    def _event(self, monitor: Monitor, event_type: str, reason: str = "") -> AlertEvent:
        return AlertEvent(
            monitor_id=monitor.id,
            monitor_name=monitor.name,
            type=event_type,
            target=monitor.target,
            reason=reason,
            timestamp=int(self._clock()),
        )

    async def process(self, monitor: Monitor, result: ProbeResult) -> AnalyzeResult:
        """Handle one probe result for a monitor.

        Results for the same monitor must be passed in probe order; the
        scheduler guarantees this by awaiting each call before probing again.
        """
        events: List[AlertEvent] = []
        transition: Optional[str] = None

        with self._lock:
            state = self._ensure_state(monitor.id)
            self.history.record_probe(monitor.id, result.latency_ms, result.up)

            if result.up:
                was_down = not state.is_up
                state.fail_count = 0
                state.reminder_count = 0

                if was_down:
                    state.is_up = True
                    self.history.record_up(monitor.id)
                    transition = "up"
                    logger.info(f"Monitor {monitor.name} ({monitor.id}) recovered")
                    events.append(self._event(monitor, "up"))
            else:
                state.fail_count += 1
                logger.debug(
                    f"Probe failed for {monitor.name} ({monitor.id}): "
                    f"{state.fail_count}/{monitor.max_retries} - {result.error}"
                )

                if state.is_up and state.fail_count >= monitor.max_retries:
                    state.is_up = False
                    state.reminder_count = 0
                    self.history.record_down(monitor.id, result.error)
                    transition = "down"
                    logger.warning(f"Monitor {monitor.name} ({monitor.id}) is DOWN: {result.error}")
                    events.append(self._event(monitor, "down", result.error))

                elif not state.is_up and monitor.reminder_interval > 0:
                    state.reminder_count += 1
                    if state.reminder_count >= monitor.reminder_interval:
                        state.reminder_count = 0
                        logger.warning(f"Monitor {monitor.name} ({monitor.id}) still DOWN (reminder)")
                        events.append(self._event(monitor, "down", result.error))

        # Alerts are queued before the dump so cancelling the caller can't drop them
        for event in events:
            self._dispatch(event)

        if transition:
            dump = self._track(self._persist(transition))
            await asyncio.shield(dump)

        return AnalyzeResult(is_failing=not result.up, events=events)

    async def _persist(self, transition: str) -> None:
        try:
            await asyncio.to_thread(self.history.dump)
        except Exception as e:
            logger.error(f"Failed to dump history on {transition}: {e}")

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _dispatch(self, event: AlertEvent) -> None:
        self._track(self._deliver(event))

    async def _deliver(self, event: AlertEvent) -> None:
        try:
            await self.router.notify(event)
        except Exception:
            logger.exception(f"Notification routing failed for monitor {event.monitor_id}")

    async def drain(self) -> None:
        """Wait for alert deliveries that are still in flight."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def remove_state(self, monitor_id: str) -> None:
        """Forget runtime state so a re-added monitor starts fresh."""
        with self._lock:
            self._states.pop(monitor_id, None)

    def get_state(self, monitor_id: str) -> Optional[MonitorState]:
        """Copy of a monitor's runtime state, or None if never probed."""
        with self._lock:
            state = self._states.get(monitor_id)
            if state is None:
                return None
            return MonitorState(state.is_up, state.fail_count, state.reminder_count)
