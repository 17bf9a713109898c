"""Daemon-first runtime entrypoint for local geotrack operation."""

from __future__ import annotations

import argparse
import logging
import os
import signal
from pathlib import Path
from threading import Event
from typing import Any

from src.geotrack.core.config_loader import clear_config_cache
from src.geotrack.runtime.service import get_runtime_service

_LOGGER = logging.getLogger(__name__)


def _install_signal_handlers(stop_event: Event) -> None:
    def _handler(_sig, _frame) -> None:  # type: ignore[no-untyped-def]
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _use_config_path(config_path: str) -> Path:
    """Point the config loader at `config_path` before the runtime reads it."""
    path = Path(config_path).expanduser().resolve()
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")
    os.environ["GEOTRACK_CONFIG_PATH"] = str(path)
    clear_config_cache()
    return path


def _log_status_change(runtime: Any, previous: str | None) -> str | None:
    status = runtime.location_status()
    current = status.get("status")
    if current != previous:
        breaker = status.get("breaker") or {}
        _LOGGER.info("location status %s -> %s (breaker=%s)", previous, current, breaker.get("state"))
    return current


def run_daemon(
    *,
    with_app: bool = True,
    host: str = "127.0.0.1",
    port: int = 8000,
    tick_sec: float = 0.5,
    stop_event: Event | None = None,
    config_path: str | None = None,
) -> int:
    if config_path:
        _LOGGER.info("using config %s", _use_config_path(config_path))
    runtime = get_runtime_service()
    started = runtime.start(source="daemon")
    location = started.get("location") or {}
    _LOGGER.info("runtime started (tracking action=%s)", location.get("action", "none"))

    if with_app:
        try:
            import uvicorn
        except Exception as exc:  # pragma: no cover - dependency error guard
            runtime.stop(source="daemon")
            raise RuntimeError("uvicorn is required for daemon app mode") from exc

        try:
            uvicorn.run("app.main:app", host=host, port=port, reload=False)
        finally:
            runtime.stop(source="daemon")
        return 0

    signal_event = stop_event or Event()
    _install_signal_handlers(signal_event)
    last_status: str | None = None
    try:
        while not signal_event.is_set():
            last_status = _log_status_change(runtime, last_status)
            signal_event.wait(timeout=max(0.05, tick_sec))
    finally:
        runtime.stop(source="daemon")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the geotrack location daemon.")
    parser.add_argument("--host", default="127.0.0.1", help="Local bind host for app mode.")
    parser.add_argument("--port", type=int, default=8000, help="Local bind port for app mode.")
    parser.add_argument(
        "--no-app",
        action="store_true",
        help="Run location tracking without launching the local API server.",
    )
    parser.add_argument(
        "--tick-sec",
        type=float,
        default=0.5,
        help="Idle loop poll interval when running without app.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Root log level.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a geotrack config JSON (overrides GEOTRACK_CONFIG_PATH).",
    )
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    return run_daemon(
        with_app=not args.no_app,
        host=args.host,
        port=args.port,
        tick_sec=max(0.05, float(args.tick_sec)),
        config_path=args.config,
    )


if __name__ == "__main__":
    raise SystemExit(main())
