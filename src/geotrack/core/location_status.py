"""Time-derived health status for the location service."""

from __future__ import annotations

from .location_types import LocationStatus

FRESH_WINDOW_MS = 45_000
STALE_WINDOW_MS = 120_000


def derive_status(enabled: bool, has_sample: bool, ms_since_last_success: float | None) -> LocationStatus:
    """Map tracking state and sample age onto a coarse status.

    Pure function; callers re-evaluate it on every notification and on a
    periodic tick because no new sample may arrive for long stretches.
    """
    if not enabled:
        return "inactive"
    if not has_sample or ms_since_last_success is None:
        return "loading"
    if ms_since_last_success < FRESH_WINDOW_MS:
        return "active"
    if ms_since_last_success < STALE_WINDOW_MS:
        return "loading"
    return "error"
