"""Core records for location tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal
from uuid import uuid4

LocationStatus = Literal["active", "loading", "error", "inactive"]
LOCATION_STATUSES: frozenset[str] = frozenset({"active", "loading", "error", "inactive"})

DEFAULT_POLL_INTERVAL_SEC = 300


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _new_sample_id() -> str:
    return f"loc_{uuid4().hex}"


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass(frozen=True, slots=True)
class LocationSample:
    """One position fix. Replaced wholesale, never mutated."""

    latitude: float
    longitude: float
    accuracy: float | None = None
    captured_at: datetime = field(default_factory=_utc_now)
    place_name: str | None = None
    sample_id: str = field(default_factory=_new_sample_id)

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError("LocationSample.latitude must be within [-90, 90].")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError("LocationSample.longitude must be within [-180, 180].")

    def to_dict(self) -> dict[str, Any]:
        return {
            "sample_id": self.sample_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "captured_at": self.captured_at.isoformat(),
            "place_name": self.place_name,
        }


@dataclass(slots=True)
class TrackingConfig:
    """User tracking preferences as supplied by the settings collaborator."""

    enabled: bool = False
    poll_interval_sec: int = DEFAULT_POLL_INTERVAL_SEC
    last_known_latitude: float | None = None
    last_known_longitude: float | None = None
    last_known_place_name: str | None = None

    def __post_init__(self) -> None:
        if self.poll_interval_sec <= 0:
            raise ValueError("TrackingConfig.poll_interval_sec must be > 0.")

    @property
    def has_last_known(self) -> bool:
        return self.last_known_latitude is not None and self.last_known_longitude is not None

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> TrackingConfig:
        """Build from either field names or dashboard settings column names.

        Dashboard columns use `location_polling_frequency` in minutes.
        """
        data = payload if isinstance(payload, dict) else {}

        enabled = data.get("enabled", data.get("location_enabled", False))

        interval = data.get("poll_interval_sec")
        if not isinstance(interval, int) or isinstance(interval, bool) or interval <= 0:
            minutes = data.get("location_polling_frequency")
            if isinstance(minutes, (int, float)) and not isinstance(minutes, bool) and minutes > 0:
                interval = int(minutes * 60)
            else:
                interval = DEFAULT_POLL_INTERVAL_SEC

        return cls(
            enabled=bool(enabled),
            poll_interval_sec=int(interval),
            last_known_latitude=_optional_float(data.get("last_known_latitude", data.get("location_latitude"))),
            last_known_longitude=_optional_float(data.get("last_known_longitude", data.get("location_longitude"))),
            last_known_place_name=_optional_str(data.get("last_known_place_name", data.get("location_name"))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "poll_interval_sec": self.poll_interval_sec,
            "last_known_latitude": self.last_known_latitude,
            "last_known_longitude": self.last_known_longitude,
            "last_known_place_name": self.last_known_place_name,
        }


@dataclass(frozen=True, slots=True)
class SearchResult:
    latitude: float
    longitude: float
    display_name: str
    short_name: str
    kind: str = "location"
    relevance: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "display_name": self.display_name,
            "short_name": self.short_name,
            "kind": self.kind,
            "relevance": self.relevance,
        }
