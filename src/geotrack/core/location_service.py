"""Location tracking service: polling, breaker policy, naming and fan-out."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from threading import RLock, Thread, current_thread
from time import monotonic
from typing import Any, Callable

from .alerts import DEFAULT_PERMISSION_ALERT_COOLDOWN_SEC, UserAlerts
from .circuit_breaker import DEFAULT_COOLDOWN_SEC, DEFAULT_MAX_FAILURES, CircuitBreaker
from .config_loader import get_location_service_config
from .errors import PermissionDeniedError, PositionError, PositionUnavailableError
from .location_status import derive_status
from .location_types import DEFAULT_POLL_INTERVAL_SEC, LocationSample, LocationStatus, SearchResult, TrackingConfig
from .polling_scheduler import PollingScheduler
from .settings_store import DEFAULT_DB_PATH, SettingsPersistence
from .subscribers import LocationListener, SubscriberRegistry

_LOGGER = logging.getLogger(__name__)

DEFAULT_SIGNIFICANT_CHANGE_DEG = 0.001
DEFAULT_POSITION_TIMEOUT_SEC = 15.0


@dataclass(slots=True)
class LocationServiceSettings:
    user_id: str = "default"
    settings_db_path: str = DEFAULT_DB_PATH
    max_failures: int = DEFAULT_MAX_FAILURES
    breaker_cooldown_sec: float = DEFAULT_COOLDOWN_SEC
    position_timeout_sec: float = DEFAULT_POSITION_TIMEOUT_SEC
    significant_change_deg: float = DEFAULT_SIGNIFICANT_CHANGE_DEG
    default_poll_interval_sec: int = DEFAULT_POLL_INTERVAL_SEC
    permission_alert_cooldown_sec: float = DEFAULT_PERMISSION_ALERT_COOLDOWN_SEC
    status_tick_sec: float = 15.0


def _positive_number(value: Any, default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return default


def load_location_service_settings(config: dict[str, Any] | None = None) -> LocationServiceSettings:
    block = get_location_service_config(config)
    if not block:
        return LocationServiceSettings()

    user_id = block.get("user_id", "default")
    db_path = block.get("settings_db_path", DEFAULT_DB_PATH)
    max_failures = block.get("max_failures", DEFAULT_MAX_FAILURES)
    interval = block.get("default_poll_interval_sec", DEFAULT_POLL_INTERVAL_SEC)

    return LocationServiceSettings(
        user_id=str(user_id).strip() if isinstance(user_id, str) and user_id.strip() else "default",
        settings_db_path=str(db_path) if isinstance(db_path, str) and db_path.strip() else DEFAULT_DB_PATH,
        max_failures=int(max_failures) if isinstance(max_failures, int) and max_failures > 0 else DEFAULT_MAX_FAILURES,
        breaker_cooldown_sec=_positive_number(block.get("breaker_cooldown_sec"), DEFAULT_COOLDOWN_SEC),
        position_timeout_sec=_positive_number(block.get("position_timeout_sec"), DEFAULT_POSITION_TIMEOUT_SEC),
        significant_change_deg=_positive_number(block.get("significant_change_deg"), DEFAULT_SIGNIFICANT_CHANGE_DEG),
        default_poll_interval_sec=int(interval) if isinstance(interval, int) and interval > 0 else DEFAULT_POLL_INTERVAL_SEC,
        permission_alert_cooldown_sec=_positive_number(
            block.get("permission_alert_cooldown_sec"), DEFAULT_PERMISSION_ALERT_COOLDOWN_SEC
        ),
        status_tick_sec=_positive_number(block.get("status_tick_sec"), 15.0),
    )


def has_significant_change(
    previous: LocationSample | None,
    sample: LocationSample,
    threshold_deg: float = DEFAULT_SIGNIFICANT_CHANGE_DEG,
) -> bool:
    """True when `sample` moved more than `threshold_deg` (~100 m) on either axis."""
    if previous is None:
        return True
    return (
        abs(previous.latitude - sample.latitude) > threshold_deg
        or abs(previous.longitude - sample.longitude) > threshold_deg
    )


class LocationTrackingService:
    """Orchestrates one user's background location tracking.

    Constructed explicitly by the composition root with its collaborators:
    a position source (`get_position(timeout_sec)`), a place-name resolver
    (`reverse_resolve`, `forward_search`) and an optional settings store
    (`load_config`, `save_config`). The service never edits the settings it
    was given; it asks the store to persist coordinates and names.
    """

    def __init__(
        self,
        *,
        position_source: Any,
        resolver: Any,
        settings_store: SettingsPersistence | None = None,
        settings: LocationServiceSettings | None = None,
        breaker: CircuitBreaker | None = None,
        alerts: UserAlerts | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._settings = settings or LocationServiceSettings()
        self._position_source = position_source
        self._resolver = resolver
        self._settings_store = settings_store
        self._clock = clock
        self._breaker = breaker or CircuitBreaker(
            max_failures=self._settings.max_failures,
            cooldown_sec=self._settings.breaker_cooldown_sec,
            clock=clock,
        )
        self._alerts = alerts or UserAlerts(permission_cooldown_sec=self._settings.permission_alert_cooldown_sec)
        self._subscribers = SubscriberRegistry()
        self._scheduler = PollingScheduler(self._poll_cycle)

        self._lock = RLock()
        self._config = TrackingConfig(poll_interval_sec=self._settings.default_poll_interval_sec)
        self._sample: LocationSample | None = None
        self._last_success: float | None = None
        self._last_poll_failed = False
        self._last_error: dict[str, str] | None = None
        self._last_status: LocationStatus = "inactive"
        self._run_generation = 0
        self._background: set[Thread] = set()

    @property
    def user_id(self) -> str:
        return self._settings.user_id

    @property
    def settings(self) -> LocationServiceSettings:
        return self._settings

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def alerts(self) -> UserAlerts:
        return self._alerts

    def subscribe(self, callback: LocationListener) -> Callable[[], None]:
        return self._subscribers.subscribe(callback)

    def _derive_locked(self) -> LocationStatus:
        has_sample = self._sample is not None
        degraded = self._config.enabled and self._last_poll_failed
        if degraded and not has_sample:
            return "error"
        elapsed_ms = None
        if self._last_success is not None:
            elapsed_ms = max(0.0, (self._clock() - self._last_success) * 1000.0)
        status = derive_status(self._config.enabled, has_sample, elapsed_ms)
        # Failing polls keep a held sample visible; they never escalate it to error.
        if degraded and status == "error":
            return "loading"
        return status

    def _publish(self) -> LocationStatus:
        with self._lock:
            status = self._derive_locked()
            self._last_status = status
            sample = self._sample
        self._subscribers.notify(sample, status)
        return status

    def update_config(self, config: TrackingConfig | dict[str, Any]) -> dict[str, Any]:
        """React to new tracking settings: start, stop or restart polling."""
        new_config = config if isinstance(config, TrackingConfig) else TrackingConfig.from_dict(config)
        with self._lock:
            old_config = self._config
            self._config = new_config
            seeded = self._seed_from_config_locked(new_config)

        if seeded:
            self._publish()

        if new_config.enabled and not old_config.enabled:
            _LOGGER.info("location tracking enabled, polling every %ss", new_config.poll_interval_sec)
            return {"ok": True, "action": "started", "seeded": seeded, "scheduler": self._start()}
        if not new_config.enabled and old_config.enabled:
            _LOGGER.info("location tracking disabled")
            return {"ok": True, "action": "stopped", "seeded": seeded, "scheduler": self._stop()}
        if new_config.enabled and new_config.poll_interval_sec != old_config.poll_interval_sec:
            _LOGGER.info("location poll interval changed to %ss, restarting", new_config.poll_interval_sec)
            return {"ok": True, "action": "restarted", "seeded": seeded, "scheduler": self._start()}
        return {"ok": True, "action": "none", "seeded": seeded}

    def _seed_from_config_locked(self, config: TrackingConfig) -> bool:
        if self._sample is not None or not config.has_last_known:
            return False
        try:
            self._sample = LocationSample(
                latitude=float(config.last_known_latitude),
                longitude=float(config.last_known_longitude),
                place_name=config.last_known_place_name,
            )
        except ValueError as exc:
            _LOGGER.warning("ignoring invalid last known location: %s", exc)
            return False
        self._last_success = self._clock()
        return True

    def load_persisted(self) -> dict[str, Any]:
        """Read the persisted settings once and apply them."""
        if self._settings_store is None:
            return {"ok": False, "error": "No settings store configured."}
        config = self._settings_store.load_config(self._settings.user_id)
        return self.update_config(config)

    def _start(self) -> dict[str, Any]:
        with self._lock:
            self._run_generation += 1
            self._last_poll_failed = False
            interval = self._config.poll_interval_sec
        return self._scheduler.start(interval)

    def _stop(self) -> dict[str, Any]:
        with self._lock:
            self._run_generation += 1
        out = self._scheduler.stop()
        self._publish()
        return out

    def shutdown(self) -> dict[str, Any]:
        """Cancel polling, drop subscribers and wait briefly for background work."""
        with self._lock:
            was_enabled = self._config.enabled
            self._config = replace(self._config, enabled=False)
            self._run_generation += 1
        self._scheduler.stop()
        if was_enabled:
            self._publish()
        self._subscribers.clear()
        drained = self.join_background(timeout=2.0)
        return {"ok": True, "running": False, "background_drained": drained}

    def join_background(self, timeout: float = 2.0) -> bool:
        """Wait for detached persist/naming tasks; True when none remain."""
        deadline = monotonic() + max(0.0, timeout)
        while True:
            with self._lock:
                pending = [thread for thread in self._background if thread is not current_thread()]
            if not pending:
                return True
            remaining = deadline - monotonic()
            if remaining <= 0:
                return False
            pending[0].join(timeout=remaining)

    def get_current_position(self) -> LocationSample:
        """One-shot fix straight from the position source, bypassing the breaker."""
        try:
            return self._position_source.get_position(self._settings.position_timeout_sec)
        except PositionError:
            raise
        except Exception as exc:
            raise PositionUnavailableError(f"Location information unavailable: {exc}") from exc

    def refresh_location(self) -> dict[str, Any]:
        """Force one poll cycle; the breaker still decides whether the source is called."""
        with self._lock:
            enabled = self._config.enabled
        if not enabled:
            return {"ok": True, "polled": False, "reason": "disabled", "status": self.current_status()}
        out = self._scheduler.refresh_now()
        return {**out, "status": self.current_status()}

    def search_locations(self, query: str, limit: int = 8) -> list[SearchResult]:
        return self._resolver.forward_search(query, limit)

    def current_config(self) -> TrackingConfig:
        with self._lock:
            return replace(self._config)

    def current_sample(self) -> LocationSample | None:
        with self._lock:
            return self._sample

    def current_status(self) -> LocationStatus:
        with self._lock:
            return self._derive_locked()

    def tick_status(self) -> LocationStatus:
        """Periodic re-evaluation; notifies subscribers only when the status moved."""
        with self._lock:
            status = self._derive_locked()
            changed = status != self._last_status
        if changed:
            return self._publish()
        return status

    def status(self) -> dict[str, Any]:
        with self._lock:
            sample = self._sample
            elapsed_ms = None
            if self._last_success is not None:
                elapsed_ms = max(0.0, (self._clock() - self._last_success) * 1000.0)
            payload = {
                "ok": True,
                "user_id": self._settings.user_id,
                "enabled": self._config.enabled,
                "poll_interval_sec": self._config.poll_interval_sec,
                "status": self._derive_locked(),
                "sample": sample.to_dict() if sample is not None else None,
                "ms_since_last_success": elapsed_ms,
                "last_error": dict(self._last_error) if self._last_error else None,
                "background_tasks": len(self._background),
            }
        payload["breaker"] = self._breaker.snapshot()
        payload["scheduler"] = self._scheduler.status()
        payload["subscribers"] = self._subscribers.count()
        return payload

    def _poll_cycle(self) -> bool:
        with self._lock:
            if not self._config.enabled:
                _LOGGER.debug("location poll skipped, tracking disabled")
                return True
            generation = self._run_generation

        if not self._breaker.should_attempt():
            _LOGGER.debug("location poll skipped, circuit breaker open")
            with self._lock:
                self._last_poll_failed = True
            self._publish()
            return False

        try:
            sample = self._position_source.get_position(self._settings.position_timeout_sec)
        except PositionError as exc:
            return self._handle_poll_failure(exc, generation)
        except Exception as exc:
            return self._handle_poll_failure(PositionUnavailableError(str(exc)), generation)
        return self._handle_poll_success(sample, generation)

    def _is_current_run(self, generation: int) -> bool:
        with self._lock:
            return generation == self._run_generation and self._config.enabled

    def _handle_poll_failure(self, exc: PositionError, generation: int) -> bool:
        if not self._is_current_run(generation):
            _LOGGER.debug("ignoring poll failure from a cancelled run")
            return True

        _LOGGER.warning("location poll failed (%s): %s", exc.kind, exc)
        opened = self._breaker.record_failure()
        if isinstance(exc, PermissionDeniedError):
            self._alerts.permission_denied(exc.user_message)

        with self._lock:
            self._last_error = exc.to_dict()
            self._last_poll_failed = True
        self._publish()

        if opened:
            self._alerts.breaker_opened(exc.user_message)
        return not self._breaker.is_open

    def _handle_poll_success(self, sample: LocationSample, generation: int) -> bool:
        if not self._is_current_run(generation):
            _LOGGER.debug("ignoring position fix from a cancelled run")
            return True

        self._breaker.record_success()
        self._alerts.breaker_closed()
        with self._lock:
            self._last_success = self._clock()
            self._last_poll_failed = False
            self._last_error = None
            accepted = has_significant_change(self._sample, sample, self._settings.significant_change_deg)
            if accepted:
                self._sample = sample
            status_before = self._last_status

        if accepted:
            _LOGGER.debug("accepted location %.5f,%.5f", sample.latitude, sample.longitude)
            self._publish()
            self._spawn_background(sample)
        elif self.current_status() != status_before:
            self._publish()
        return True

    def _spawn_background(self, sample: LocationSample) -> None:
        thread = Thread(
            target=self._persist_and_resolve,
            args=(sample,),
            daemon=True,
            name="geotrack-place-resolver",
        )
        with self._lock:
            self._background.add(thread)
        thread.start()

    def _save(self, partial: dict[str, Any]) -> None:
        if self._settings_store is None:
            return
        try:
            self._settings_store.save_config(self._settings.user_id, partial)
        except Exception:
            _LOGGER.exception("failed to persist location settings")

    def _persist_and_resolve(self, sample: LocationSample) -> None:
        try:
            self._save(
                {
                    "last_known_latitude": sample.latitude,
                    "last_known_longitude": sample.longitude,
                    "last_known_place_name": None,
                }
            )
            name = self._resolver.reverse_resolve(sample.latitude, sample.longitude)
            if name and self._apply_place_name(sample, name):
                self._save(
                    {
                        "last_known_latitude": sample.latitude,
                        "last_known_longitude": sample.longitude,
                        "last_known_place_name": name,
                    }
                )
        except Exception:
            _LOGGER.exception("background location update failed")
        finally:
            with self._lock:
                self._background.discard(current_thread())

    def _apply_place_name(self, sample: LocationSample, name: str) -> bool:
        with self._lock:
            current = self._sample
            if not self._config.enabled:
                return False
            if current is None or current.sample_id != sample.sample_id:
                _LOGGER.debug("discarding place name for superseded sample %s", sample.sample_id)
                return False
            self._sample = replace(current, place_name=name)
        self._publish()
        return True
