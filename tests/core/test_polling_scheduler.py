from __future__ import annotations

import threading
import time

import pytest

from src.geotrack.core.polling_scheduler import TIMER_THREAD_NAME, PollingScheduler


def _poller_threads(name: str = TIMER_THREAD_NAME) -> list[threading.Thread]:
    return [thread for thread in threading.enumerate() if thread.name == name and thread.is_alive()]


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class _CountingCycle:
    def __init__(self, pollable: bool = True) -> None:
        self.calls = 0
        self.pollable = pollable
        self._lock = threading.Lock()

    def __call__(self) -> bool:
        with self._lock:
            self.calls += 1
        return self.pollable


def test_start_polls_immediately_and_arms_timer():
    cycle = _CountingCycle()
    scheduler = PollingScheduler(cycle, thread_name="test-poller-start")
    try:
        out = scheduler.start(60)
        assert out["ok"] is True
        assert out["polled"] is True
        assert out["running"] is True
        assert cycle.calls == 1
        assert scheduler.is_armed() is True
    finally:
        scheduler.stop()


def test_timer_repeats_at_interval():
    cycle = _CountingCycle()
    scheduler = PollingScheduler(cycle, thread_name="test-poller-repeat")
    try:
        scheduler.start(0.05)
        assert _wait_for(lambda: cycle.calls >= 3)
    finally:
        scheduler.stop()


def test_double_start_leaves_exactly_one_timer_thread():
    cycle = _CountingCycle()
    scheduler = PollingScheduler(cycle, thread_name="test-poller-double")
    try:
        scheduler.start(60)
        scheduler.start(60)
        assert len(_poller_threads("test-poller-double")) == 1
        assert scheduler.status()["generation"] == 2
    finally:
        scheduler.stop()
    assert _wait_for(lambda: not _poller_threads("test-poller-double"))


def test_stop_cancels_timer_and_no_more_cycles_run():
    cycle = _CountingCycle()
    scheduler = PollingScheduler(cycle, thread_name="test-poller-stop")
    scheduler.start(0.05)
    assert _wait_for(lambda: cycle.calls >= 2)
    out = scheduler.stop()
    assert out == {"ok": True, "running": False}

    calls_after_stop = cycle.calls
    time.sleep(0.2)
    assert cycle.calls == calls_after_stop
    assert scheduler.status()["active"] is False


def test_start_does_not_arm_when_not_pollable():
    cycle = _CountingCycle(pollable=False)
    scheduler = PollingScheduler(cycle, thread_name="test-poller-unpollable")
    out = scheduler.start(0.05)
    assert out["pollable"] is False
    assert out["running"] is False
    assert scheduler.is_armed() is False
    time.sleep(0.15)
    assert cycle.calls == 1


def test_timer_disarms_when_cycle_reports_not_pollable_and_refresh_rearms():
    cycle = _CountingCycle()
    scheduler = PollingScheduler(cycle, thread_name="test-poller-disarm")
    try:
        scheduler.start(0.05)
        cycle.pollable = False
        assert _wait_for(lambda: not scheduler.is_armed())
        calls = cycle.calls
        time.sleep(0.15)
        assert cycle.calls == calls

        cycle.pollable = True
        out = scheduler.refresh_now()
        assert out["polled"] is True
        assert out["running"] is True
    finally:
        scheduler.stop()


def test_refresh_is_coalesced_while_cycle_in_flight():
    entered = threading.Event()
    release = threading.Event()
    calls = {"count": 0}

    def _slow_cycle() -> bool:
        calls["count"] += 1
        entered.set()
        release.wait(timeout=2.0)
        return True

    scheduler = PollingScheduler(_slow_cycle, thread_name="test-poller-coalesce")
    worker = threading.Thread(target=scheduler.refresh_now, daemon=True)
    worker.start()
    assert entered.wait(timeout=2.0)

    out = scheduler.refresh_now()
    assert out["coalesced"] is True
    assert out["polled"] is False
    assert scheduler.status()["in_flight"] is True

    release.set()
    worker.join(timeout=2.0)
    assert calls["count"] == 1
    assert scheduler.status()["coalesced"] == 1


def test_cycle_exception_is_contained():
    def _boom() -> bool:
        raise RuntimeError("cycle failed")

    scheduler = PollingScheduler(_boom, thread_name="test-poller-raise")
    try:
        out = scheduler.start(60)
        assert out["polled"] is True
        assert out["pollable"] is True
    finally:
        scheduler.stop()


def test_start_rejects_non_positive_interval():
    scheduler = PollingScheduler(_CountingCycle())
    with pytest.raises(ValueError):
        scheduler.start(0)
