"""Cancellable repeating timer that drives location poll cycles."""

from __future__ import annotations

import logging
from threading import Event, Lock, RLock, Thread, current_thread
from typing import Any, Callable

_LOGGER = logging.getLogger(__name__)

# Returns whether the system is still pollable (breaker not open).
PollCycle = Callable[[], bool]

TIMER_THREAD_NAME = "geotrack-location-poller"


class PollingScheduler:
    """Owns a single timer thread plus the one-cycle-at-a-time guard.

    Every `start`/`stop` bumps a generation counter. A timer thread only
    polls while its generation is current, so a cancelled timer never fires
    again even if it was mid-wait when cancelled.
    """

    def __init__(self, poll_cycle: PollCycle, *, thread_name: str = TIMER_THREAD_NAME) -> None:
        self._poll_cycle = poll_cycle
        self._thread_name = thread_name
        self._lock = RLock()
        self._cycle_lock = Lock()
        self._generation = 0
        self._active = False
        self._interval_sec: float | None = None
        self._thread: Thread | None = None
        self._stop_event: Event | None = None
        self._cycles = 0
        self._coalesced = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def is_armed(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self, interval_sec: float) -> dict[str, Any]:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0.")
        self._cancel_timer()
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._active = True
            self._interval_sec = float(interval_sec)

        ran, pollable = self._run_cycle()
        armed = self._arm(generation) if pollable else False
        if not armed:
            _LOGGER.info("location polling not armed (pollable=%s)", pollable)
        return {
            "ok": True,
            "running": armed,
            "polled": ran,
            "pollable": pollable,
            "interval_sec": float(interval_sec),
        }

    def stop(self) -> dict[str, Any]:
        with self._lock:
            self._generation += 1
            self._active = False
        self._cancel_timer()
        return {"ok": True, "running": False}

    def refresh_now(self) -> dict[str, Any]:
        """Run one cycle now; coalesced when a cycle is already in flight."""
        ran, pollable = self._run_cycle()
        if not ran:
            return {"ok": True, "polled": False, "coalesced": True, "running": self.is_armed()}

        with self._lock:
            generation = self._generation
            active = self._active
        if not pollable:
            self._cancel_timer()
        elif active and not self.is_armed():
            self._arm(generation)
        return {"ok": True, "polled": True, "coalesced": False, "pollable": pollable, "running": self.is_armed()}

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "active": self._active,
                "running": self._thread is not None and self._thread.is_alive(),
                "interval_sec": self._interval_sec,
                "generation": self._generation,
                "cycles": self._cycles,
                "coalesced": self._coalesced,
                "in_flight": self._cycle_lock.locked(),
            }

    def _run_cycle(self) -> tuple[bool, bool]:
        if not self._cycle_lock.acquire(blocking=False):
            with self._lock:
                self._coalesced += 1
            _LOGGER.debug("poll cycle already in flight, coalescing")
            return False, True
        try:
            with self._lock:
                self._cycles += 1
            try:
                pollable = bool(self._poll_cycle())
            except Exception:
                _LOGGER.exception("poll cycle raised")
                pollable = True
        finally:
            self._cycle_lock.release()
        return True, pollable

    def _arm(self, generation: int) -> bool:
        with self._lock:
            if generation != self._generation or not self._active or self._interval_sec is None:
                return False
            if self._thread is not None and self._thread.is_alive():
                return True
            stop_event = Event()
            thread = Thread(
                target=self._run_timer,
                args=(generation, stop_event, self._interval_sec),
                daemon=True,
                name=self._thread_name,
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()
        _LOGGER.debug("location polling armed every %.1fs", self._interval_sec)
        return True

    def _cancel_timer(self) -> None:
        with self._lock:
            thread = self._thread
            stop_event = self._stop_event
            self._thread = None
            self._stop_event = None
        if stop_event is not None:
            stop_event.set()
        if thread is not None and thread is not current_thread() and thread.is_alive():
            thread.join(timeout=2.0)

    def _run_timer(self, generation: int, stop_event: Event, interval_sec: float) -> None:
        while not stop_event.wait(timeout=interval_sec):
            with self._lock:
                if generation != self._generation:
                    return
            ran, pollable = self._run_cycle()
            if ran and not pollable:
                with self._lock:
                    if self._stop_event is stop_event:
                        self._thread = None
                        self._stop_event = None
                _LOGGER.info("location polling disarmed, source not pollable")
                return
