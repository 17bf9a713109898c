"""Position source adapters: one-shot "where am I" queries."""

from __future__ import annotations

import json
import logging
import socket
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from src.geotrack.core.config_loader import get_home_location, get_position_source_config, load_config_or_empty
from src.geotrack.core.errors import (
    PermissionDeniedError,
    PositionTimeoutError,
    PositionUnavailableError,
)
from src.geotrack.core.location_types import LocationSample

_LOGGER = logging.getLogger(__name__)

DEFAULT_POSITION_TIMEOUT_SEC = 15.0
DEFAULT_IP_GEOLOCATION_URL = "https://ipapi.co/json/"
DEFAULT_USER_AGENT = "geotrack/0.1 (+local-dashboard)"


class PositionSource(Protocol):
    name: str

    def get_position(self, timeout_sec: float = DEFAULT_POSITION_TIMEOUT_SEC) -> LocationSample: ...


def _coerce_coordinate(payload: dict[str, Any], *keys: str) -> float | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                continue
    return None


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, (TimeoutError, socket.timeout)):
        return True
    reason = getattr(exc, "reason", None)
    return isinstance(reason, (TimeoutError, socket.timeout))


class StaticPositionSource:
    """Serves the configured home location; a fixed-site stand-in for a GPS fix."""

    name = "static"

    def __init__(
        self,
        *,
        latitude: float | None,
        longitude: float | None,
        accuracy: float | None = None,
        permission_granted: bool = True,
    ) -> None:
        self._latitude = latitude
        self._longitude = longitude
        self._accuracy = accuracy
        self._permission_granted = permission_granted

    def get_position(self, timeout_sec: float = DEFAULT_POSITION_TIMEOUT_SEC) -> LocationSample:
        _ = timeout_sec
        if not self._permission_granted:
            raise PermissionDeniedError("Location access denied by user")
        if self._latitude is None or self._longitude is None:
            raise PositionUnavailableError("Location information unavailable")
        return LocationSample(latitude=self._latitude, longitude=self._longitude, accuracy=self._accuracy)


class IpPositionSource:
    """Coarse position from an IP geolocation JSON endpoint."""

    name = "ip"

    def __init__(self, *, url: str = DEFAULT_IP_GEOLOCATION_URL, user_agent: str = DEFAULT_USER_AGENT) -> None:
        self._url = url
        self._user_agent = user_agent

    def _fetch(self, timeout_sec: float) -> dict[str, Any]:
        req = Request(self._url, headers={"User-Agent": self._user_agent, "Accept": "application/json"}, method="GET")
        with urlopen(req, timeout=timeout_sec) as response:
            body = response.read().decode("utf-8")
        payload = json.loads(body)
        if not isinstance(payload, dict):
            raise ValueError("IP geolocation response must be a JSON object.")
        return payload

    def get_position(self, timeout_sec: float = DEFAULT_POSITION_TIMEOUT_SEC) -> LocationSample:
        try:
            payload = self._fetch(timeout_sec)
        except HTTPError as exc:
            if exc.code in {401, 403}:
                raise PermissionDeniedError(f"Location access denied ({exc.code})") from exc
            raise PositionUnavailableError(f"Location information unavailable ({exc.code})") from exc
        except (URLError, TimeoutError, OSError) as exc:
            if _is_timeout(exc):
                raise PositionTimeoutError("Location request timed out") from exc
            raise PositionUnavailableError(f"Location information unavailable: {exc}") from exc
        except ValueError as exc:
            raise PositionUnavailableError(f"Location information unavailable: {exc}") from exc

        if payload.get("error") or payload.get("status") == "fail":
            reason = payload.get("reason") or payload.get("message") or "lookup failed"
            raise PositionUnavailableError(f"Location information unavailable: {reason}")

        latitude = _coerce_coordinate(payload, "latitude", "lat")
        longitude = _coerce_coordinate(payload, "longitude", "lon")
        if latitude is None or longitude is None:
            raise PositionUnavailableError("Location information unavailable: no coordinates in response")
        _LOGGER.debug("ip geolocation fix %.4f,%.4f from %s", latitude, longitude, self._url)
        try:
            return LocationSample(
                latitude=latitude,
                longitude=longitude,
                accuracy=_coerce_coordinate(payload, "accuracy"),
            )
        except ValueError as exc:
            raise PositionUnavailableError(f"Location information unavailable: {exc}") from exc


def build_position_source(config: dict[str, Any] | None = None) -> PositionSource:
    """Pick the adapter named by `position_source.kind` (default `static`)."""
    payload = config if config is not None else load_config_or_empty()
    settings = get_position_source_config(payload)
    kind = str(settings.get("kind") or "static").strip().lower()

    if kind == "ip":
        url = settings.get("url")
        return IpPositionSource(url=url if isinstance(url, str) and url.strip() else DEFAULT_IP_GEOLOCATION_URL)
    if kind != "static":
        raise ValueError(f"Unknown position source kind `{kind}`.")

    home = get_home_location(payload) or {}
    return StaticPositionSource(
        latitude=_coerce_coordinate(home, "lat", "latitude"),
        longitude=_coerce_coordinate(home, "lon", "longitude"),
        accuracy=_coerce_coordinate(home, "accuracy"),
        permission_granted=bool(settings.get("permission_granted", True)),
    )
