from __future__ import annotations

import importlib
import logging
import os
import sys
from threading import Event

import pytest

from src.geotrack.core.config_loader import clear_config_cache, load_config_or_empty
from src.geotrack.daemon.main import main, run_daemon

daemon_module = importlib.import_module("src.geotrack.daemon.main")


class _FakeRuntime:
    def __init__(self) -> None:
        self.starts: list[dict] = []
        self.stops: list[dict] = []

    def start(self, **kwargs):
        self.starts.append(kwargs)
        return {"ok": True}

    def stop(self, **kwargs):
        self.stops.append(kwargs)
        return {"ok": True}

    def location_status(self):
        return {"ok": True, "status": "inactive", "breaker": {"state": "closed"}}


def test_run_daemon_no_app_start_and_stop(monkeypatch):
    fake = _FakeRuntime()
    stop_event = Event()
    stop_event.set()
    monkeypatch.setattr("src.geotrack.daemon.main.get_runtime_service", lambda: fake)

    out = run_daemon(with_app=False, stop_event=stop_event)
    assert out == 0
    assert fake.starts == [{"source": "daemon"}]
    assert fake.stops == [{"source": "daemon"}]


def test_run_daemon_with_app_invokes_uvicorn(monkeypatch):
    fake = _FakeRuntime()
    calls: list[tuple] = []

    class _FakeUvicorn:
        @staticmethod
        def run(*args, **kwargs):
            calls.append((args, kwargs))
            return None

    monkeypatch.setattr("src.geotrack.daemon.main.get_runtime_service", lambda: fake)
    monkeypatch.setitem(sys.modules, "uvicorn", _FakeUvicorn)

    out = run_daemon(with_app=True, host="127.0.0.1", port=9000)
    assert out == 0
    assert calls == [(("app.main:app",), {"host": "127.0.0.1", "port": 9000, "reload": False})]
    assert len(fake.starts) == 1
    assert len(fake.stops) == 1


def test_run_daemon_stops_runtime_when_app_crashes(monkeypatch):
    fake = _FakeRuntime()

    class _CrashingUvicorn:
        @staticmethod
        def run(*args, **kwargs):
            raise RuntimeError("bind failed")

    monkeypatch.setattr("src.geotrack.daemon.main.get_runtime_service", lambda: fake)
    monkeypatch.setitem(sys.modules, "uvicorn", _CrashingUvicorn)

    with pytest.raises(RuntimeError, match="bind failed"):
        run_daemon(with_app=True)
    assert len(fake.stops) == 1


def test_main_parses_no_app_args(monkeypatch):
    fake = _FakeRuntime()
    stop_event = Event()
    stop_event.set()
    seen: dict = {}
    monkeypatch.setattr("src.geotrack.daemon.main.get_runtime_service", lambda: fake)
    monkeypatch.setattr("src.geotrack.daemon.main._configure_logging", lambda level: seen.setdefault("level", level))

    def _run(**kwargs):
        seen.update(kwargs)
        return run_daemon(stop_event=stop_event, **{k: v for k, v in kwargs.items() if k != "with_app"}, with_app=False)

    monkeypatch.setattr("src.geotrack.daemon.main.run_daemon", _run)

    out = main(["--no-app", "--tick-sec", "0.1", "--log-level", "DEBUG"])
    assert out == 0
    assert seen["with_app"] is False
    assert seen["tick_sec"] == 0.1
    assert seen["level"] == "DEBUG"
    assert seen["config_path"] is None


def test_configure_logging_sets_root_level(monkeypatch):
    captured: dict = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

    daemon_module._configure_logging("warning")
    assert captured["level"] == logging.WARNING


def test_run_daemon_points_loader_at_config_path(monkeypatch, tmp_path):
    config_path = tmp_path / "geotrack.json"
    config_path.write_text('{"location_service": {"user_id": "daemon-user"}}', encoding="utf-8")
    monkeypatch.setenv("GEOTRACK_CONFIG_PATH", "/nonexistent/config.json")
    fake = _FakeRuntime()
    seen: dict = {}

    def _get_runtime():
        seen["env"] = os.environ["GEOTRACK_CONFIG_PATH"]
        return fake

    stop_event = Event()
    stop_event.set()
    monkeypatch.setattr("src.geotrack.daemon.main.get_runtime_service", _get_runtime)

    out = run_daemon(with_app=False, stop_event=stop_event, config_path=str(config_path))
    assert out == 0
    assert seen["env"] == str(config_path.resolve())
    assert load_config_or_empty()["location_service"]["user_id"] == "daemon-user"
    clear_config_cache()


def test_run_daemon_rejects_missing_config_path(monkeypatch, tmp_path):
    fake = _FakeRuntime()
    monkeypatch.setattr("src.geotrack.daemon.main.get_runtime_service", lambda: fake)

    with pytest.raises(FileNotFoundError):
        run_daemon(with_app=False, config_path=str(tmp_path / "missing.json"))
    assert fake.starts == []


def test_idle_loop_logs_location_status_transitions(monkeypatch, caplog):
    stop_event = Event()
    statuses = ["loading", "loading", "active", "error"]

    class _StatusRuntime(_FakeRuntime):
        def location_status(self):
            current = statuses.pop(0)
            if not statuses:
                stop_event.set()
            return {"ok": True, "status": current, "breaker": {"state": "open" if current == "error" else "closed"}}

    fake = _StatusRuntime()
    monkeypatch.setattr("src.geotrack.daemon.main.get_runtime_service", lambda: fake)
    monkeypatch.setattr("src.geotrack.daemon.main._install_signal_handlers", lambda event: None)

    with caplog.at_level(logging.INFO, logger="src.geotrack.daemon.main"):
        out = run_daemon(with_app=False, tick_sec=0.05, stop_event=stop_event)

    assert out == 0
    transitions = [record.getMessage() for record in caplog.records if "location status" in record.getMessage()]
    assert transitions == [
        "location status None -> loading (breaker=closed)",
        "location status loading -> active (breaker=closed)",
        "location status active -> error (breaker=open)",
    ]
    assert fake.stops == [{"source": "daemon"}]
