from __future__ import annotations

import json
import threading

import pytest
from pydantic import ValidationError

from pulsewatch.models.history import Incident, LatencyPoint
from pulsewatch.services import history as history_module
from pulsewatch.services.history import (
    INCIDENT_RETENTION_SECONDS,
    HistoryLoadError,
    HistoryStore,
    calc_uptime,
    evict_incidents,
)

DAY = 24 * 3600


def _store(tmp_path, clock, max_points: int = 100) -> HistoryStore:
    return HistoryStore(
        str(tmp_path / "history.json"),
        str(tmp_path / "incidents.json"),
        max_points,
        clock=clock,
    )


def test_calc_uptime_empty_window_is_full() -> None:
    assert calc_uptime([], 1000, DAY) == 100.0

    old = [LatencyPoint(time=0, latency=5, up=False)]
    assert calc_uptime(old, 10 * DAY, DAY) == 100.0


def test_calc_uptime_rounds_to_two_decimals() -> None:
    points = [LatencyPoint(time=100 + i, latency=1, up=(i != 0)) for i in range(3)]
    assert calc_uptime(points, 200, DAY) == 66.67


def test_ring_buffer_keeps_newest_points(tmp_path, clock) -> None:
    store = _store(tmp_path, clock, max_points=3)

    for i in range(5):
        store.record_probe("m1", latency_ms=i, up=True)
        clock.advance(1)

    h = store.get_monitor("m1")
    assert [p.latency for p in h.latency_history] == [2, 3, 4]


def test_shrinking_max_points_applies_on_next_probe(tmp_path, clock) -> None:
    store = _store(tmp_path, clock, max_points=10)
    for i in range(6):
        store.record_probe("m1", latency_ms=i, up=True)

    store.set_max_history_points(2)
    store.record_probe("m1", latency_ms=99, up=True)

    assert [p.latency for p in store.get_monitor("m1").latency_history] == [5, 99]


def test_record_probe_updates_status_fields(tmp_path, clock) -> None:
    store = _store(tmp_path, clock)

    store.record_probe("m1", latency_ms=10, up=True)
    clock.advance(60)
    store.record_probe("m1", latency_ms=20, up=False)

    h = store.get_monitor("m1")
    assert h.is_up is False
    assert h.last_check_time == int(clock())
    assert h.uptime_24h == 50.0
    assert h.uptime_7d == 50.0
    assert h.uptime_30d == 50.0


def test_get_monitor_returns_a_copy(tmp_path, clock) -> None:
    store = _store(tmp_path, clock)
    store.record_probe("m1", latency_ms=10, up=True)

    h = store.get_monitor("m1")
    h.latency_history.clear()

    assert len(store.get_monitor("m1").latency_history) == 1
    assert store.get_monitor("unknown") is None


def test_points_and_incidents_are_immutable() -> None:
    point = LatencyPoint(time=1, latency=5, up=True)
    incident = Incident(started_at=1)

    with pytest.raises(ValidationError):
        point.latency = 10
    with pytest.raises(ValidationError):
        incident.resolved_at = 2


def test_copies_are_isolated_from_later_recording(tmp_path, clock) -> None:
    store = _store(tmp_path, clock)
    store.record_probe("m1", latency_ms=10, up=False)
    store.record_down("m1", "HTTP 500")

    before = store.get_all()["m1"]
    clock.advance(60)
    store.record_probe("m1", latency_ms=20, up=True)
    store.record_up("m1")

    assert [p.latency for p in before.latency_history] == [10]
    assert before.incidents[0].is_open
    after = store.get_monitor("m1")
    assert [p.latency for p in after.latency_history] == [10, 20]
    assert after.incidents[0].duration == 60


def test_dump_writes_files_without_holding_store_lock(tmp_path, clock, monkeypatch) -> None:
    store = _store(tmp_path, clock)
    store.record_probe("m1", latency_ms=10, up=True)
    store.record_down("m1", "HTTP 500")
    lock_free = []
    real_write = history_module.atomic_write_text

    def try_lock() -> None:
        if store._lock.acquire(blocking=False):
            store._lock.release()
            lock_free.append(True)
        else:
            lock_free.append(False)

    def write_checking_lock(path: str, text: str) -> None:
        # The lock is reentrant, so it has to be tried from another thread
        worker = threading.Thread(target=try_lock)
        worker.start()
        worker.join()
        real_write(path, text)

    monkeypatch.setattr(history_module, "atomic_write_text", write_checking_lock)

    store.dump()

    assert lock_free == [True, True]
    assert json.loads((tmp_path / "incidents.json").read_text())["monitors"]["m1"][0]["reason"] == "HTTP 500"


def test_record_up_resolves_latest_open_incident(tmp_path, clock) -> None:
    store = _store(tmp_path, clock)

    store.record_down("m1", "tcp dial: refused")
    clock.advance(120)
    store.record_up("m1")

    incidents = store.get_monitor("m1").incidents
    assert len(incidents) == 1
    assert incidents[0].resolved_at == incidents[0].started_at + 120
    assert incidents[0].duration == 120


def test_dump_and_reload_round_trip(tmp_path, clock) -> None:
    store = _store(tmp_path, clock)
    store.record_probe("m1", latency_ms=12, up=True)
    clock.advance(10)
    store.record_probe("m1", latency_ms=30, up=False)
    store.record_down("m1", "HTTP 500")
    store.dump()

    reloaded = _store(tmp_path, clock)
    before = store.get_monitor("m1")
    after = reloaded.get_monitor("m1")

    assert after.uptime_24h == before.uptime_24h
    assert after.latency_history == before.latency_history
    assert after.incidents == before.incidents
    assert after.is_up is False


def test_dump_writes_compact_points_and_separate_incidents(tmp_path, clock) -> None:
    store = _store(tmp_path, clock)
    store.record_probe("m1", latency_ms=7, up=True)
    store.record_down("m1", "boom")
    store.dump()

    history_doc = json.loads((tmp_path / "history.json").read_text())
    incidents_doc = json.loads((tmp_path / "incidents.json").read_text())

    assert history_doc["version"] == 1
    assert history_doc["last_dump_time"] == int(clock())
    entry = history_doc["monitors"]["m1"]
    assert "incidents" not in entry
    assert entry["latency_history"] == [{"t": int(clock()), "v": 7, "up": True}]

    assert incidents_doc["monitors"]["m1"][0]["reason"] == "boom"
    assert incidents_doc["monitors"]["m1"][0]["resolved_at"] is None


def test_old_resolved_incidents_are_evicted_on_dump(tmp_path, clock) -> None:
    store = _store(tmp_path, clock)

    # Resolved incident, 31 days old
    store.record_down("m1", "old")
    clock.advance(60)
    store.record_up("m1")
    # Open incident of the same age must survive
    store.record_down("m2", "still down")

    clock.advance(31 * DAY)
    store.record_down("m1", "recent")
    store.dump()

    reloaded = _store(tmp_path, clock)
    assert [i.reason for i in reloaded.get_monitor("m1").incidents] == ["recent"]
    assert [i.reason for i in reloaded.get_monitor("m2").incidents] == ["still down"]


def test_evict_incidents_boundary() -> None:
    now = 100 * DAY
    cutoff = now - INCIDENT_RETENTION_SECONDS
    incidents = [
        Incident(started_at=cutoff - 1, resolved_at=cutoff + 10),
        Incident(started_at=cutoff, resolved_at=cutoff + 10),
        Incident(started_at=0),
    ]

    kept = evict_incidents(incidents, now)
    assert [i.started_at for i in kept] == [cutoff, 0]


def test_legacy_embedded_incidents_are_migrated(tmp_path, clock) -> None:
    legacy = {
        "last_dump_time": 100,
        "monitors": {
            "m1": {
                "uptime_24h": 90.0,
                "latency_history": [{"t": 100, "v": 20, "up": True}],
                "incidents": [{"type": "down", "started_at": 50, "resolved_at": 80, "duration": 30}],
                "last_check_time": 100,
                "is_up": True,
            }
        },
    }
    (tmp_path / "history.json").write_text(json.dumps(legacy))

    store = _store(tmp_path, clock)
    h = store.get_monitor("m1")
    assert h.uptime_24h == 90.0
    assert len(h.incidents) == 1
    assert h.incidents[0].duration == 30

    store.dump()
    history_doc = json.loads((tmp_path / "history.json").read_text())
    incidents_doc = json.loads((tmp_path / "incidents.json").read_text())
    assert "incidents" not in history_doc["monitors"]["m1"]
    # Resolved but older than 30 days relative to the clock, so evicted
    assert incidents_doc["monitors"] == {}


def test_corrupt_incidents_file_falls_back_to_history(tmp_path, clock) -> None:
    legacy = {
        "version": 1,
        "monitors": {"m1": {"incidents": [{"started_at": int(clock())}]}},
    }
    (tmp_path / "history.json").write_text(json.dumps(legacy))
    (tmp_path / "incidents.json").write_text("{not json")

    store = _store(tmp_path, clock)
    assert len(store.get_monitor("m1").incidents) == 1


def test_incidents_file_wins_over_embedded_incidents(tmp_path, clock) -> None:
    history_doc = {"version": 1, "monitors": {"m1": {"incidents": [{"started_at": 1}]}}}
    incidents_doc = {"version": 1, "monitors": {"m1": [{"started_at": 2}, {"started_at": 3}]}}
    (tmp_path / "history.json").write_text(json.dumps(history_doc))
    (tmp_path / "incidents.json").write_text(json.dumps(incidents_doc))

    store = _store(tmp_path, clock)
    assert [i.started_at for i in store.get_monitor("m1").incidents] == [2, 3]


def test_corrupt_history_file_raises(tmp_path, clock) -> None:
    (tmp_path / "history.json").write_text("[[[")

    with pytest.raises(HistoryLoadError):
        _store(tmp_path, clock)


def test_remove_monitor_drops_everything(tmp_path, clock) -> None:
    store = _store(tmp_path, clock)
    store.record_probe("m1", latency_ms=1, up=True)
    store.record_down("m1", "x")

    store.remove_monitor("m1")
    store.dump()

    assert store.get_monitor("m1") is None
    assert "m1" not in store.get_all()
    assert "m1" not in json.loads((tmp_path / "incidents.json").read_text())["monitors"]
