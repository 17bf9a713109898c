"""Observer list for location/status changes."""

from __future__ import annotations

import logging
from threading import RLock
from typing import Callable

from .location_types import LocationSample, LocationStatus

_LOGGER = logging.getLogger(__name__)

LocationListener = Callable[[LocationSample | None, LocationStatus], None]


class SubscriberRegistry:
    """Synchronous fan-out to registered listeners.

    Delivery iterates over a snapshot, so listeners may subscribe or
    unsubscribe from inside a callback. A listener that raises is logged and
    skipped; the remaining listeners still receive the update.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._listeners: list[tuple[int, LocationListener]] = []
        self._next_token = 0

    def subscribe(self, callback: LocationListener) -> Callable[[], None]:
        if not callable(callback):
            raise TypeError("callback must be callable.")
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners.append((token, callback))

        def _unsubscribe() -> None:
            with self._lock:
                self._listeners = [item for item in self._listeners if item[0] != token]

        return _unsubscribe

    def notify(self, sample: LocationSample | None, status: LocationStatus) -> int:
        """Deliver to every listener; return how many raised."""
        with self._lock:
            snapshot = list(self._listeners)

        failed = 0
        for _token, callback in snapshot:
            try:
                callback(sample, status)
            except Exception:
                failed += 1
                _LOGGER.warning("location listener %r raised", callback, exc_info=True)
        return failed

    def clear(self) -> None:
        with self._lock:
            self._listeners = []

    def count(self) -> int:
        with self._lock:
            return len(self._listeners)
