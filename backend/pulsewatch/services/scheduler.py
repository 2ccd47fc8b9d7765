"""Scheduler service - one probe loop per monitor, reconciled against config.

Design:
- Each enabled monitor gets its own asyncio task that probes immediately,
  then sleeps its interval (or its retry interval while failing) and repeats
- Config changes are picked up by a watcher task; the running set is diffed
  against the new config: removed monitors are cancelled, changed monitors
  are cancelled and restarted, new ones are started
- Periodic history persistence runs as an APScheduler interval job
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..models.monitor import Monitor
from ..models.settings import AppConfig
from ..utils.logs import set_log_level
from .analyzer import Analyzer
from .checker import CheckerService, checker_service
from .config_manager import ChangeSignal, ConfigManager
from .history import HistoryStore

logger = logging.getLogger(__name__)

DUMP_JOB_ID = "dump_history"


@dataclass
class RunningMonitor:
    """A live probe loop and the parameters it was started with."""
    monitor: Monitor
    interval: int
    task: asyncio.Task


class SchedulerService:
    """Owns the per-monitor probe loops."""

    def __init__(
        self,
        config_manager: ConfigManager,
        analyzer: Analyzer,
        history: HistoryStore,
        checker: CheckerService = checker_service,
        manage_log_level: bool = False,
    ):
        self.config_manager = config_manager
        self.analyzer = analyzer
        self.history = history
        self.checker = checker
        self.manage_log_level = manage_log_level

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running: Dict[str, RunningMonitor] = {}
        self._stopping: Set[asyncio.Task] = set()
        self._watcher: Optional[asyncio.Task] = None
        self._signal: Optional[ChangeSignal] = None
        self._dump_interval: Optional[int] = None
        self._started = False

    def start(self):
        """Start probe loops, the config watcher and the periodic dump job.

        Must be called from inside the running event loop.
        """
        if self._started:
            return

        cfg = self.config_manager.get_snapshot()
        self._signal = self.config_manager.subscribe()

        self.scheduler = AsyncIOScheduler()
        self._dump_interval = cfg.system.dump_interval
        self.scheduler.add_job(
            self._dump_history,
            trigger=IntervalTrigger(seconds=self._dump_interval),
            id=DUMP_JOB_ID,
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()

        self.sync_monitors(cfg)
        self._watcher = asyncio.create_task(self._watch_changes())
        self._started = True
        logger.info(f"Scheduler started ({len(self._running)} monitors, dump every {self._dump_interval}s)")

    async def stop(self):
        """Cancel every loop and wait until all of them have exited."""
        if not self._started:
            return
        self._started = False

        tasks: List[asyncio.Task] = []
        if self._watcher:
            self._watcher.cancel()
            tasks.append(self._watcher)
            self._watcher = None

        for rm in self._running.values():
            rm.task.cancel()
            tasks.append(rm.task)
        self._running.clear()
        tasks.extend(self._stopping)

        await asyncio.gather(*tasks, return_exceptions=True)

        if self._signal:
            self.config_manager.unsubscribe(self._signal)
            self._signal = None
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
        logger.info("Scheduler stopped")

    def running_ids(self) -> List[str]:
        """Ids of monitors with a live probe loop."""
        return sorted(self._running)

    def get_running(self, monitor_id: str) -> Optional[Monitor]:
        rm = self._running.get(monitor_id)
        return rm.monitor if rm else None

    async def _watch_changes(self):
        while True:
            await self._signal.wait()
            logger.info("Config changed, syncing monitors")
            try:
                self.apply_config(self.config_manager.get_snapshot())
            except Exception:
                logger.exception("Error applying config change")

    def apply_config(self, cfg: AppConfig):
        """React to a new config snapshot."""
        self.history.set_max_history_points(cfg.system.max_history_points)
        if self.manage_log_level:
            set_log_level(cfg.system.log_level)

        if self.scheduler and cfg.system.dump_interval != self._dump_interval:
            self._dump_interval = cfg.system.dump_interval
            self.scheduler.reschedule_job(DUMP_JOB_ID, trigger=IntervalTrigger(seconds=self._dump_interval))
            logger.info(f"History dump interval changed to {self._dump_interval}s")

        self.sync_monitors(cfg)

    def sync_monitors(self, cfg: AppConfig):
        """Diff running loops against the config and start/stop as needed."""
        default_interval = cfg.system.check_interval
        desired = {m.id: m for m in cfg.monitors if m.is_enabled}
        configured = {m.id for m in cfg.monitors}

        for monitor_id in list(self._running):
            rm = self._running[monitor_id]
            wanted = desired.get(monitor_id)
            if wanted is None:
                logger.info(f"Stopping removed monitor {monitor_id}")
                self._cancel(monitor_id)
                self.analyzer.remove_state(monitor_id)
                if monitor_id not in configured:
                    # Deleted, not just disabled: drop history once the loop can no longer write it
                    self._drop_history(monitor_id)
                    rm.task.add_done_callback(lambda _task, mid=monitor_id: self._drop_history(mid))
            elif rm.monitor != wanted or rm.interval != wanted.effective_interval(default_interval):
                logger.info(f"Restarting changed monitor {monitor_id}")
                self._cancel(monitor_id)

        for monitor_id, monitor in desired.items():
            if monitor_id not in self._running:
                self._start_monitor(monitor, default_interval)

    def _drop_history(self, monitor_id: str):
        # A monitor re-added under the same id keeps its new history
        if monitor_id not in self._running:
            self.history.remove_monitor(monitor_id)

    def _cancel(self, monitor_id: str):
        rm = self._running.pop(monitor_id)
        rm.task.cancel()
        # Keep a handle until it exits so stop() can still wait for it
        self._stopping.add(rm.task)
        rm.task.add_done_callback(self._stopping.discard)

    def _start_monitor(self, monitor: Monitor, default_interval: int):
        interval = monitor.effective_interval(default_interval)
        task = asyncio.create_task(self._run_monitor(monitor, interval), name=f"monitor:{monitor.id}")
        self._running[monitor.id] = RunningMonitor(monitor=monitor, interval=interval, task=task)

    async def _run_monitor(self, monitor: Monitor, interval: int):
        """Probe loop for one monitor. Runs until cancelled."""
        retry_interval = monitor.retry_interval if monitor.retry_interval > 0 else interval
        logger.info(f"Monitor {monitor.name} ({monitor.id}) started: {monitor.type} every {interval}s")

        try:
            while True:
                failing = await self._check_monitor(monitor)
                delay = retry_interval if failing and retry_interval < interval else interval
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.info(f"Monitor {monitor.name} ({monitor.id}) stopped")
            raise

    async def _check_monitor(self, monitor: Monitor) -> bool:
        """Probe once and feed the analyzer. Returns True if the probe failed."""
        try:
            result = await self.checker.check(
                monitor.type,
                monitor.target,
                monitor.timeout,
                ignore_tls=monitor.ignore_tls,
            )
            outcome = await self.analyzer.process(monitor, result)
            return outcome.is_failing
        except Exception:
            logger.exception(f"Error checking monitor {monitor.id}")
            return False

    async def _dump_history(self):
        """Periodic persistence job."""
        try:
            await asyncio.to_thread(self.history.dump)
            logger.debug("Periodic history dump complete")
        except Exception as e:
            logger.error(f"Periodic history dump failed: {e}")
