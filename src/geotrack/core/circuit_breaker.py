"""Consecutive-failure circuit breaker for the polling path."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from time import monotonic
from typing import Any, Callable, Literal

_LOGGER = logging.getLogger(__name__)

BreakerState = Literal["closed", "open", "half_open"]

DEFAULT_MAX_FAILURES = 3
DEFAULT_COOLDOWN_SEC = 5 * 60


@dataclass(slots=True)
class CircuitState:
    consecutive_failures: int = 0
    open_until: float | None = None
    opened_count: int = 0


class CircuitBreaker:
    """Stop attempting after `max_failures` consecutive failures.

    Once open, `should_attempt()` is false until `cooldown_sec` has elapsed
    since the failure that opened it. After that the breaker is half-open: an
    attempt is admitted, a failure re-opens it for a full cooldown and a
    success closes it. Callers serialize attempts, so a half-open breaker
    admits one probe at a time.
    """

    def __init__(
        self,
        *,
        max_failures: int = DEFAULT_MAX_FAILURES,
        cooldown_sec: float = DEFAULT_COOLDOWN_SEC,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        if max_failures <= 0:
            raise ValueError("max_failures must be > 0.")
        if cooldown_sec < 0:
            raise ValueError("cooldown_sec must be >= 0.")
        self._max_failures = int(max_failures)
        self._cooldown_sec = float(cooldown_sec)
        self._clock = clock
        self._lock = Lock()
        self._state = CircuitState()

    @property
    def max_failures(self) -> int:
        return self._max_failures

    def _current_state(self) -> BreakerState:
        if self._state.open_until is None:
            return "closed"
        if self._clock() < self._state.open_until:
            return "open"
        return "half_open"

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._current_state()

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._state.consecutive_failures

    def should_attempt(self) -> bool:
        with self._lock:
            state = self._current_state()
        if state == "half_open":
            _LOGGER.info("circuit breaker half-open, admitting probe")
        return state != "open"

    def record_failure(self) -> bool:
        """Count a failure; return True when this failure opened the breaker."""
        with self._lock:
            was_tripped = self._state.open_until is not None
            self._state.consecutive_failures += 1
            if self._state.consecutive_failures < self._max_failures:
                return False
            self._state.open_until = self._clock() + self._cooldown_sec
            if was_tripped:
                _LOGGER.info("circuit breaker probe failed, re-opened for %.0fs", self._cooldown_sec)
                return False
            self._state.opened_count += 1
            failures = self._state.consecutive_failures
        _LOGGER.warning("circuit breaker opened after %d consecutive failures", failures)
        return True

    def record_success(self) -> None:
        with self._lock:
            was_tripped = self._state.open_until is not None
            self._state.consecutive_failures = 0
            self._state.open_until = None
        if was_tripped:
            _LOGGER.info("circuit breaker closed")

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState(opened_count=self._state.opened_count)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            state = self._current_state()
            remaining = None
            if self._state.open_until is not None:
                remaining = max(0.0, self._state.open_until - self._clock())
            return {
                "state": state,
                "consecutive_failures": int(self._state.consecutive_failures),
                "max_failures": self._max_failures,
                "cooldown_sec": self._cooldown_sec,
                "cooldown_remaining_sec": remaining,
                "opened_count": int(self._state.opened_count),
            }
