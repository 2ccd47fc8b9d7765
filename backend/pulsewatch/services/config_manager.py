"""Config manager - loads, validates, saves and broadcasts config.json."""
import asyncio
import json
import logging
import os
import threading
from typing import List, Optional

from pydantic import ValidationError

from ..models.settings import (
    AppConfig,
    ConfigValidationError,
    apply_defaults,
    default_config,
    validate_config,
)
from ..utils.fileio import atomic_write_text, read_text
from ..utils.migrations import CURRENT_CONFIG_VERSION, migrate_config

logger = logging.getLogger(__name__)


class ChangeSignal:
    """Level-triggered "config changed" wake-up for one subscriber.

    Firing never blocks and repeated fires before the subscriber wakes
    collapse into one. The subscriber re-reads the current snapshot after
    waking, so nothing is lost by coalescing.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def fire(self) -> None:
        """Mark the signal as set. Safe to call from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            self._event.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._event.set()
        else:
            loop.call_soon_threadsafe(self._event.set)

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Wait until fired, then reset."""
        self._loop = asyncio.get_running_loop()
        await self._event.wait()
        self._event.clear()


class ConfigManager:
    """Single owner of the live configuration.

    Readers get deep copies. Writers submit a whole replacement config which
    is validated, written to disk and swapped in atomically, after which every
    subscriber is signalled.
    """

    def __init__(self, file_path: str):
        self.file_path = file_path
        self._lock = threading.RLock()
        self._subscribers: List[ChangeSignal] = []
        self._revision = 0

        raw = read_text(file_path)
        if raw is None:
            logger.warning(f"Config file not found, using defaults: {file_path}")
            self._config = default_config()
        else:
            self._config = self._parse(raw)
        logger.info(f"Loaded config with {len(self._config.monitors)} monitors")

    @property
    def revision(self) -> int:
        """Incremented on every successful save."""
        return self._revision

    def get_snapshot(self) -> AppConfig:
        """Return a copy of the current config (safe to mutate)."""
        with self._lock:
            return self._config.model_copy(deep=True)

    def subscribe(self) -> ChangeSignal:
        """Register a new subscriber signal, fired after each successful save."""
        signal = ChangeSignal()
        with self._lock:
            self._subscribers.append(signal)
        return signal

    def unsubscribe(self, signal: ChangeSignal) -> None:
        with self._lock:
            if signal in self._subscribers:
                self._subscribers.remove(signal)

    def save(self, cfg: AppConfig) -> AppConfig:
        """Validate, persist and apply a replacement config.

        Returns the config as applied (defaults filled in).

        Raises:
            ConfigValidationError: If the config is invalid; nothing changes
            OSError: If the file cannot be written; nothing changes
        """
        cfg = apply_defaults(cfg)
        cfg.version = CURRENT_CONFIG_VERSION
        errors = validate_config(cfg)
        if errors:
            raise ConfigValidationError(errors)

        with self._lock:
            self._write(cfg)
            self._config = cfg
            self._revision += 1
            subscribers = list(self._subscribers)

        for signal in subscribers:
            signal.fire()

        logger.info(f"Config saved (revision {self._revision}, {len(cfg.monitors)} monitors)")
        return cfg.model_copy(deep=True)

    def _parse(self, raw: str) -> AppConfig:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigValidationError([f"parse config JSON: {e}"]) from e
        if not isinstance(data, dict):
            raise ConfigValidationError(["config root must be an object"])

        data = migrate_config(data)
        try:
            cfg = AppConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigValidationError(
                [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            ) from e

        cfg = apply_defaults(cfg)
        errors = validate_config(cfg)
        if errors:
            raise ConfigValidationError(errors)
        return cfg

    def _write(self, cfg: AppConfig) -> None:
        directory = os.path.dirname(os.path.abspath(self.file_path))
        os.makedirs(directory, exist_ok=True)
        atomic_write_text(self.file_path, cfg.model_dump_json(indent=2, exclude_none=True))
