from __future__ import annotations

from typing import Any, Callable, List

import pytest

from pulsewatch.models.monitor import Monitor
from pulsewatch.models.settings import AppConfig, SystemConfig
from pulsewatch.services.config_manager import ConfigManager
from pulsewatch.services.history import HistoryStore
from pulsewatch.services.notifier import AlertEvent


class FakeClock:
    def __init__(self, start: float = 1_700_000_000) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingRouter:
    def __init__(self) -> None:
        self.events: List[AlertEvent] = []

    async def notify(self, event: AlertEvent) -> dict:
        self.events.append(event)
        return {}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def router() -> RecordingRouter:
    return RecordingRouter()


@pytest.fixture
def history(tmp_path, clock: FakeClock) -> HistoryStore:
    return HistoryStore(
        str(tmp_path / "history.json"),
        str(tmp_path / "incidents.json"),
        100,
        clock=clock,
    )


@pytest.fixture
def make_monitor() -> Callable[..., Monitor]:
    def _make(**overrides: Any) -> Monitor:
        fields = {
            "id": "m1",
            "name": "Example",
            "type": "http",
            "target": "https://example.com",
            "interval": 60,
            "timeout": 5,
            "max_retries": 3,
        }
        fields.update(overrides)
        return Monitor(**fields)

    return _make


@pytest.fixture
def config_manager(tmp_path) -> ConfigManager:
    manager = ConfigManager(str(tmp_path / "config.json"))
    manager.save(AppConfig(system=SystemConfig(check_interval=60, timezone="UTC")))
    return manager
