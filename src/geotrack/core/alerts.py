"""Rate-limited user-facing alerts for the location service."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from threading import RLock
from time import monotonic
from typing import Any, Callable
from uuid import uuid4

_LOGGER = logging.getLogger(__name__)

DEFAULT_PERMISSION_ALERT_COOLDOWN_SEC = 10 * 60
_MAX_ALERTS = 500

AlertSink = Callable[[dict[str, Any]], None]


class UserAlerts:
    """Decide which failures become user-visible alerts.

    Breaker alerts fire once per open transition and re-arm only after the
    breaker closes. Permission alerts fire at most once per cooldown window.
    """

    def __init__(
        self,
        *,
        permission_cooldown_sec: float = DEFAULT_PERMISSION_ALERT_COOLDOWN_SEC,
        on_alert: AlertSink | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._lock = RLock()
        self._permission_cooldown_sec = max(0.0, float(permission_cooldown_sec))
        self._on_alert = on_alert
        self._clock = clock
        self._breaker_alert_armed = True
        self._last_permission_alert: float | None = None
        self._alerts: list[dict[str, Any]] = []

    @staticmethod
    def _utc_now_iso() -> str:
        return datetime.now(tz=UTC).isoformat()

    def _emit(self, *, kind: str, message: str) -> dict[str, Any]:
        alert = {
            "alert_id": f"alrt_{uuid4().hex}",
            "kind": kind,
            "message": message,
            "timestamp": self._utc_now_iso(),
        }
        with self._lock:
            self._alerts.append(alert)
            if len(self._alerts) > _MAX_ALERTS:
                self._alerts = self._alerts[-_MAX_ALERTS:]
        _LOGGER.info("user alert %s: %s", kind, message)
        if self._on_alert is not None:
            try:
                self._on_alert(dict(alert))
            except Exception:
                _LOGGER.warning("alert sink raised for %s", kind, exc_info=True)
        return alert

    def breaker_opened(self, message: str) -> dict[str, Any] | None:
        with self._lock:
            if not self._breaker_alert_armed:
                return None
            self._breaker_alert_armed = False
        return self._emit(kind="breaker_open", message=message)

    def breaker_closed(self) -> None:
        with self._lock:
            self._breaker_alert_armed = True

    def permission_denied(self, message: str) -> dict[str, Any] | None:
        now = self._clock()
        with self._lock:
            last = self._last_permission_alert
            if last is not None and now - last < self._permission_cooldown_sec:
                return None
            self._last_permission_alert = now
        return self._emit(kind="permission_denied", message=message)

    def recent(self, *, limit: int = 20) -> list[dict[str, Any]]:
        safe_limit = max(1, min(200, int(limit)))
        with self._lock:
            return [dict(alert) for alert in self._alerts[-safe_limit:]]
