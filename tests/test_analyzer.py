from __future__ import annotations

import asyncio
import time

import pytest

from pulsewatch.services.analyzer import Analyzer
from pulsewatch.services.checker import ProbeResult

OK = ProbeResult(up=True, latency=0.05)
FAIL = ProbeResult(up=False, latency=0.2, error="HTTP 503")


@pytest.mark.asyncio
async def test_failures_below_threshold_stay_up_without_alert(history, router, clock, make_monitor) -> None:
    analyzer = Analyzer(history, router, clock=clock)
    monitor = make_monitor(max_retries=3)

    for _ in range(2):
        outcome = await analyzer.process(monitor, FAIL)
        assert outcome.is_failing is True
        assert outcome.events == []
        clock.advance(60)

    await analyzer.drain()
    state = analyzer.get_state("m1")
    assert state is not None
    assert state.is_up is True
    assert state.fail_count == 2
    assert router.events == []


@pytest.mark.asyncio
async def test_threshold_failure_goes_down_with_one_alert(history, router, clock, make_monitor) -> None:
    analyzer = Analyzer(history, router, clock=clock)
    monitor = make_monitor(max_retries=3)

    for _ in range(5):
        await analyzer.process(monitor, FAIL)
        clock.advance(60)
    await analyzer.drain()

    assert [e.type for e in router.events] == ["down"]
    assert router.events[0].reason == "HTTP 503"
    assert analyzer.get_state("m1").is_up is False

    incidents = history.get_monitor("m1").incidents
    assert len(incidents) == 1
    assert incidents[0].is_open
    assert incidents[0].reason == "HTTP 503"


@pytest.mark.asyncio
async def test_success_resets_counter_without_event(history, router, clock, make_monitor) -> None:
    analyzer = Analyzer(history, router, clock=clock)
    monitor = make_monitor(max_retries=3)

    await analyzer.process(monitor, FAIL)
    await analyzer.process(monitor, FAIL)
    outcome = await analyzer.process(monitor, OK)
    await analyzer.process(monitor, FAIL)
    await analyzer.process(monitor, FAIL)
    await analyzer.drain()

    assert outcome.events == []
    assert router.events == []
    assert analyzer.get_state("m1").fail_count == 2
    assert analyzer.get_state("m1").is_up is True


@pytest.mark.asyncio
async def test_reminder_fires_every_r_failures_while_down(history, router, clock, make_monitor) -> None:
    analyzer = Analyzer(history, router, clock=clock)
    monitor = make_monitor(max_retries=1, reminder_interval=3)

    # 1 failure -> DOWN, then 7 more -> reminders after the 3rd and 6th
    for _ in range(8):
        await analyzer.process(monitor, FAIL)
        clock.advance(10)
    await analyzer.drain()

    assert [e.type for e in router.events] == ["down", "down", "down"]
    # Reminders don't open new incidents
    assert len(history.get_monitor("m1").incidents) == 1


@pytest.mark.asyncio
async def test_no_reminder_when_cadence_is_zero(history, router, clock, make_monitor) -> None:
    analyzer = Analyzer(history, router, clock=clock)
    monitor = make_monitor(max_retries=1, reminder_interval=0)

    for _ in range(10):
        await analyzer.process(monitor, FAIL)
    await analyzer.drain()

    assert len(router.events) == 1


@pytest.mark.asyncio
async def test_down_then_recovery_resolves_incident(history, router, clock, make_monitor) -> None:
    analyzer = Analyzer(history, router, clock=clock)
    monitor = make_monitor(max_retries=3)

    times = []
    for result in (FAIL, FAIL, FAIL, OK):
        times.append(int(clock()))
        await analyzer.process(monitor, result)
        clock.advance(30)
    await analyzer.drain()

    assert [e.type for e in router.events] == ["down", "up"]
    assert router.events[0].timestamp == times[2]
    assert router.events[1].timestamp == times[3]

    h = history.get_monitor("m1")
    assert h.is_up is True
    assert len(h.incidents) == 1
    incident = h.incidents[0]
    assert incident.started_at == times[2]
    assert incident.resolved_at == times[3]
    assert incident.duration == times[3] - times[2]

    # Every probe was recorded, including the failing ones
    assert [p.up for p in h.latency_history] == [False, False, False, True]


@pytest.mark.asyncio
async def test_transition_dumps_history_immediately(tmp_path, history, router, clock, make_monitor) -> None:
    analyzer = Analyzer(history, router, clock=clock)
    monitor = make_monitor(max_retries=1)

    await analyzer.process(monitor, OK)
    assert not (tmp_path / "incidents.json").exists()

    await analyzer.process(monitor, FAIL)
    await analyzer.drain()
    assert (tmp_path / "incidents.json").exists()
    assert (tmp_path / "history.json").exists()


@pytest.mark.asyncio
async def test_remove_state_starts_fresh(history, router, clock, make_monitor) -> None:
    analyzer = Analyzer(history, router, clock=clock)
    monitor = make_monitor(max_retries=1)

    await analyzer.process(monitor, FAIL)
    analyzer.remove_state("m1")
    assert analyzer.get_state("m1") is None

    await analyzer.process(monitor, OK)
    await analyzer.drain()
    # Fresh state starts UP, so the success is not a recovery
    assert [e.type for e in router.events] == ["down"]


@pytest.mark.asyncio
async def test_router_failure_does_not_break_processing(history, clock, make_monitor) -> None:
    class BrokenRouter:
        async def notify(self, event):
            raise RuntimeError("boom")

    analyzer = Analyzer(history, BrokenRouter(), clock=clock)
    monitor = make_monitor(max_retries=1)

    outcome = await analyzer.process(monitor, FAIL)
    await analyzer.drain()
    assert [e.type for e in outcome.events] == ["down"]


@pytest.mark.asyncio
async def test_cancel_during_transition_dump_still_alerts(
    tmp_path, history, router, clock, make_monitor, monkeypatch
) -> None:
    real_dump = history.dump

    def slow_dump() -> None:
        time.sleep(0.3)
        real_dump()

    monkeypatch.setattr(history, "dump", slow_dump)
    analyzer = Analyzer(history, router, clock=clock)
    monitor = make_monitor(max_retries=1)

    task = asyncio.create_task(analyzer.process(monitor, FAIL))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    await analyzer.drain()
    assert analyzer.get_state("m1").is_up is False
    assert [e.type for e in router.events] == ["down"]
    # The dump finished even though its caller was cancelled
    assert (tmp_path / "incidents.json").exists()
