"""Shared runtime ownership facade for daemon/app entrypoints."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from threading import Event, RLock, Thread
from typing import Any, Callable

from src.geotrack.core.config_loader import load_config_or_empty
from src.geotrack.core.errors import GeocodingError, PositionError
from src.geotrack.core.location_service import LocationTrackingService, load_location_service_settings
from src.geotrack.core.location_types import LocationSample, LocationStatus
from src.geotrack.core.settings_store import SettingsPersistence, SettingsStore, merge_partial_config
from src.geotrack.tools.geocoding import build_place_resolver, handle_geocoding_request
from src.geotrack.tools.position_source import build_position_source

_LOGGER = logging.getLogger(__name__)

_MAX_EVENTS = 200


class RuntimeService:
    """Single authority for runtime lifecycle + app-facing location operations."""

    def __init__(
        self,
        *,
        config: dict[str, Any] | None = None,
        service: LocationTrackingService | None = None,
        settings_store: SettingsPersistence | None = None,
    ) -> None:
        self._lock = RLock()
        self._config = config
        self._service = service
        self._settings_store = settings_store
        self._unsubscribe: Callable[[], None] | None = None
        self._events: list[dict[str, Any]] = []
        self._started = False
        self._last_start_source: str | None = None
        self._last_stop_source: str | None = None
        self._ticker: Thread | None = None
        self._ticker_stop = Event()

    def _payload(self) -> dict[str, Any]:
        if self._config is None:
            self._config = load_config_or_empty()
        return self._config

    def location_service(self) -> LocationTrackingService:
        with self._lock:
            if self._service is None:
                payload = self._payload()
                settings = load_location_service_settings(payload)
                if self._settings_store is None:
                    self._settings_store = SettingsStore(settings.settings_db_path)
                self._service = LocationTrackingService(
                    position_source=build_position_source(payload),
                    resolver=build_place_resolver(payload),
                    settings_store=self._settings_store,
                    settings=settings,
                )
            return self._service

    def _record_event(self, sample: LocationSample | None, status: LocationStatus) -> None:
        event = {
            "status": status,
            "sample": sample.to_dict() if sample is not None else None,
            "timestamp": datetime.now(tz=UTC).isoformat(),
        }
        with self._lock:
            self._events.append(event)
            if len(self._events) > _MAX_EVENTS:
                self._events = self._events[-_MAX_EVENTS:]

    def start(self, *, source: str = "runtime") -> dict[str, Any]:
        service = self.location_service()
        with self._lock:
            already_started = self._started
            self._started = True
            self._last_start_source = source
            if self._unsubscribe is None:
                self._unsubscribe = service.subscribe(self._record_event)
            if self._ticker is None or not self._ticker.is_alive():
                self._ticker_stop = Event()
                self._ticker = Thread(
                    target=self._run_ticker,
                    args=(service, self._ticker_stop),
                    daemon=True,
                    name="geotrack-status-ticker",
                )
                self._ticker.start()

        loaded: dict[str, Any] = {"ok": False, "error": "No settings store configured."}
        if not already_started:
            try:
                loaded = service.load_persisted()
            except Exception as exc:
                _LOGGER.exception("failed to load persisted tracking settings")
                loaded = {"ok": False, "error": str(exc)}

        return {
            "ok": True,
            "source": "runtime_service",
            "already_started": already_started,
            "started": True,
            "start_source": source,
            "location": loaded,
        }

    @staticmethod
    def _run_ticker(service: LocationTrackingService, stop_event: Event) -> None:
        interval = max(0.05, float(service.settings.status_tick_sec))
        while not stop_event.wait(timeout=interval):
            try:
                service.tick_status()
            except Exception:
                _LOGGER.exception("location status tick failed")

    def stop(self, *, source: str = "runtime") -> dict[str, Any]:
        with self._lock:
            service = self._service
            ticker = self._ticker
            self._ticker = None
            self._ticker_stop.set()
            self._started = False
            self._last_stop_source = source
            self._unsubscribe = None

        if ticker is not None:
            ticker.join(timeout=2.0)
        shutdown: dict[str, Any] = {"ok": True, "running": False}
        if service is not None:
            shutdown = service.shutdown()
        return {
            "ok": True,
            "source": "runtime_service",
            "stopped": True,
            "stop_source": source,
            "location": shutdown,
        }

    def health(self) -> dict[str, Any]:
        status = self.location_status()
        return {
            "ok": True,
            "source": "runtime_service",
            "runtime": {
                "started": self._started,
                "last_start_source": self._last_start_source,
                "last_stop_source": self._last_stop_source,
            },
            "location": {
                "status": status.get("status"),
                "enabled": status.get("enabled"),
                "breaker": status.get("breaker"),
            },
        }

    def location_status(self) -> dict[str, Any]:
        return self.location_service().status()

    def update_config(self, partial: dict[str, Any]) -> dict[str, Any]:
        """Persist a partial settings change, then hand the result to the service."""
        service = self.location_service()
        try:
            if self._settings_store is not None:
                self._settings_store.save_config(service.user_id, partial)
                merged = self._settings_store.load_config(service.user_id)
            else:
                merged = merge_partial_config(service.current_config(), partial)
        except ValueError as exc:
            return {"ok": False, "error": str(exc)}
        out = service.update_config(merged)
        return {**out, "config": merged.to_dict()}

    def refresh(self) -> dict[str, Any]:
        return self.location_service().refresh_location()

    def current_position(self) -> dict[str, Any]:
        try:
            sample = self.location_service().get_current_position()
        except PositionError as exc:
            return {"ok": False, **exc.to_dict()}
        return {"ok": True, "sample": sample.to_dict()}

    def search(self, *, query: str, limit: int = 8) -> dict[str, Any]:
        try:
            results = self.location_service().search_locations(query, limit)
        except GeocodingError as exc:
            return {"ok": False, "error": str(exc), "results": []}
        return {"ok": True, "query": query, "results": [item.to_dict() for item in results]}

    def list_events(self, *, limit: int = 50) -> dict[str, Any]:
        safe_limit = max(1, min(_MAX_EVENTS, int(limit)))
        with self._lock:
            events = [dict(event) for event in self._events[-safe_limit:]]
        alerts = self.location_service().alerts.recent(limit=safe_limit)
        return {"ok": True, "events": events, "alerts": alerts}

    def list_alerts(self, *, limit: int = 20) -> dict[str, Any]:
        return {"ok": True, "alerts": self.location_service().alerts.recent(limit=limit)}

    def geocoding(self, body: Any) -> tuple[int, dict[str, Any]]:
        return handle_geocoding_request(body)


_RUNTIME_SERVICE: RuntimeService | None = None


def get_runtime_service() -> RuntimeService:
    global _RUNTIME_SERVICE
    if _RUNTIME_SERVICE is None:
        _RUNTIME_SERVICE = RuntimeService()
    return _RUNTIME_SERVICE
