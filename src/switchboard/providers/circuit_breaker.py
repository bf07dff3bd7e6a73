"""Circuit breaker — isolates unhealthy providers and re-tests them.

State machine:
    CLOSED    → (failure ratio over full window, or M consecutive failures) → OPEN
    OPEN      → (cool-down expires)                                       → HALF_OPEN
    HALF_OPEN → (trial succeeds)                                          → CLOSED
    HALF_OPEN → (trial fails, cool-down doubled up to the cap)            → OPEN

Only one trial call is let through while HALF_OPEN.  Every transition starts
a new generation; results from calls admitted under an older generation
never move the circuit.
"""

from __future__ import annotations

import enum
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class Permit:
    """Admission ticket returned by ``CircuitBreaker.try_acquire``.

    ``generation`` identifies the breaker period (closed, half-open) in
    which the call was admitted.  Results carrying a permit from an
    earlier period are stale and leave the circuit untouched.
    """

    generation: int
    trial: bool = False


class CircuitBreaker:
    """Per-provider circuit breaker with a sliding failure window."""

    def __init__(
        self,
        provider_id: str,
        *,
        window_size: int = 20,
        failure_ratio: float = 0.5,
        consecutive_failures: int = 5,
        cooldown_seconds: float = 30.0,
        max_cooldown_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        if not 0.0 <= failure_ratio <= 1.0:
            raise ValueError("failure_ratio must be within [0, 1]")
        if consecutive_failures < 1:
            raise ValueError("consecutive_failures must be at least 1")

        self._provider_id = provider_id
        self._window_size = window_size
        self._failure_ratio = failure_ratio
        self._consecutive_threshold = consecutive_failures
        self._base_cooldown = cooldown_seconds
        self._max_cooldown = max(max_cooldown_seconds, cooldown_seconds)
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._generation = 0
        self._window: deque[bool] = deque(maxlen=window_size)
        self._consecutive_failures = 0
        self._cooldown = cooldown_seconds
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_transition_to_half_open()
            return self._state

    @property
    def generation(self) -> int:
        with self._lock:
            self._maybe_transition_to_half_open()
            return self._generation

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    @property
    def failure_ratio(self) -> float:
        """Failure ratio over the current window (0.0 when empty)."""
        with self._lock:
            if not self._window:
                return 0.0
            return sum(1 for ok in self._window if not ok) / len(self._window)

    @property
    def cooldown_seconds(self) -> float:
        """Cool-down that applies to the current (or next) open period."""
        with self._lock:
            return self._cooldown

    @property
    def cooldown_remaining(self) -> float:
        with self._lock:
            if self._state != CircuitState.OPEN:
                return 0.0
            return max(0.0, self._opened_at + self._cooldown - self._clock())

    def try_acquire(self) -> Permit | None:
        """Ask for permission to make one call.

        Always granted while CLOSED, never while OPEN, and exactly once per
        HALF_OPEN period.  Returns ``None`` when refused.  The permit must be
        handed back to ``record_success``, ``record_failure`` or ``release``.
        """
        with self._lock:
            self._maybe_transition_to_half_open()

            if self._state == CircuitState.CLOSED:
                return Permit(self._generation)

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    return None
                self._trial_in_flight = True
                return Permit(self._generation, trial=True)

            return None

    def record_success(self, permit: Permit | None = None) -> None:
        """Record a successful call.  The trial's success closes the circuit.

        Without a permit the result is attributed to the current period.
        """
        with self._lock:
            self._maybe_transition_to_half_open()
            if not self._is_current(permit):
                logger.debug(
                    "circuit_breaker_stale_result",
                    provider=self._provider_id,
                    state=self._state.value,
                )
                return
            prev = self._state
            self._consecutive_failures = 0
            if prev == CircuitState.HALF_OPEN:
                self._close()
                logger.info(
                    "circuit_breaker_closed",
                    provider=self._provider_id,
                    previous_state=prev.value,
                )
            else:
                self._window.append(True)

    def record_failure(self, permit: Permit | None = None) -> None:
        """Record a health-relevant failure.  May trip the circuit."""
        with self._lock:
            self._maybe_transition_to_half_open()
            if not self._is_current(permit):
                logger.debug(
                    "circuit_breaker_stale_result",
                    provider=self._provider_id,
                    state=self._state.value,
                )
                return

            self._consecutive_failures += 1

            if self._state == CircuitState.HALF_OPEN:
                self._cooldown = min(self._cooldown * 2, self._max_cooldown)
                self._open()
                logger.warning(
                    "circuit_breaker_reopened",
                    provider=self._provider_id,
                    failures=self._consecutive_failures,
                    cooldown_s=self._cooldown,
                )
                return

            self._window.append(False)
            failures = sum(1 for ok in self._window if not ok)
            ratio_tripped = (
                len(self._window) >= self._window_size
                and failures / len(self._window) > self._failure_ratio
            )
            if ratio_tripped or self._consecutive_failures >= self._consecutive_threshold:
                self._open()
                logger.warning(
                    "circuit_breaker_opened",
                    provider=self._provider_id,
                    failures=self._consecutive_failures,
                    window_failures=failures,
                    window_size=len(self._window),
                    cooldown_s=self._cooldown,
                )

    def release(self, permit: Permit | None = None) -> None:
        """Settle a permit without a health signal (neutral outcome).

        Only the holder of the half-open trial frees it.
        """
        with self._lock:
            self._maybe_transition_to_half_open()
            if self._state == CircuitState.HALF_OPEN and self._is_current(permit):
                self._trial_in_flight = False

    def reset(self) -> None:
        """Force-reset the circuit to CLOSED (for admin override)."""
        with self._lock:
            self._close()
            self._consecutive_failures = 0
            logger.info("circuit_breaker_force_reset", provider=self._provider_id)

    def _is_current(self, permit: Permit | None) -> bool:
        """Caller must hold lock."""
        if permit is None:
            return self._state != CircuitState.OPEN
        return permit.generation == self._generation

    def _close(self) -> None:
        """Caller must hold lock."""
        self._state = CircuitState.CLOSED
        self._generation += 1
        self._window.clear()
        self._cooldown = self._base_cooldown
        self._trial_in_flight = False

    def _open(self) -> None:
        """Caller must hold lock."""
        self._state = CircuitState.OPEN
        self._generation += 1
        self._opened_at = self._clock()
        self._window.clear()
        self._trial_in_flight = False

    def _maybe_transition_to_half_open(self) -> None:
        """Caller must hold lock."""
        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - self._opened_at
            if elapsed >= self._cooldown:
                self._state = CircuitState.HALF_OPEN
                self._generation += 1
                self._trial_in_flight = False
                logger.info(
                    "circuit_breaker_half_open",
                    provider=self._provider_id,
                    elapsed_s=round(elapsed, 1),
                )
