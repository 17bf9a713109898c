"""Exceptions raised across the location tracking service boundary."""

from __future__ import annotations

from typing import Literal

PositionErrorKind = Literal["permission_denied", "unavailable", "timeout"]


class LocationServiceError(Exception):
    """Base class for location service errors."""


class PositionError(LocationServiceError):
    """A position source could not produce a fix."""

    kind: PositionErrorKind = "unavailable"
    default_user_message = "Location services are unavailable. Using manual mode."

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(message)
        self.user_message = user_message or self.default_user_message

    def to_dict(self) -> dict[str, str]:
        return {"error_kind": self.kind, "error": str(self), "user_message": self.user_message}


class PermissionDeniedError(PositionError):
    kind: PositionErrorKind = "permission_denied"
    default_user_message = "Please allow location access in your settings and try again."


class PositionUnavailableError(PositionError):
    kind: PositionErrorKind = "unavailable"
    default_user_message = (
        "Location services may be disabled or unavailable. Try enabling location services on your device."
    )


class PositionTimeoutError(PositionError):
    kind: PositionErrorKind = "timeout"
    default_user_message = "Location request took too long. Please try again."


class GeocodingError(LocationServiceError):
    """Every geocoding provider failed for a request that must not be absorbed."""
