"""Retry policy — decides whether and when to retry the same provider.

The decision is a pure function of the attempt number, the outcome and the
remaining budget; it never sleeps or calls anything, so the orchestrator
owns all timing.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from switchboard.providers.types import CallOutcome

# Above this, a jittered delay could undercut the previous attempt's delay.
MAX_JITTER = 1 / 3


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with multiplicative jitter.

    Delay for attempt ``n`` (1-based) is ``base * 2**(n-1)`` scaled by a
    uniform factor in ``[1 - jitter, 1 + jitter]`` and capped at
    ``max_delay_s``.
    """

    max_attempts: int = 3
    base_delay_s: float = 0.5
    max_delay_s: float = 10.0
    jitter: float = 0.2
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("delays must be non-negative")
        if not 0.0 <= self.jitter <= MAX_JITTER:
            raise ValueError(f"jitter must be within [0, {MAX_JITTER:.3f}]")

    def attempts_for(self, *, idempotent: bool) -> int:
        """Attempt budget per provider.  Non-idempotent calls never repeat."""
        return self.max_attempts if idempotent else 1

    def backoff(self, attempt: int) -> float:
        """Jittered, capped delay to wait after failed attempt ``attempt``."""
        raw = self.base_delay_s * (2 ** (attempt - 1))
        if self.jitter:
            raw *= self.rng.uniform(1 - self.jitter, 1 + self.jitter)
        return min(raw, self.max_delay_s)

    def should_retry(
        self,
        attempt: int,
        outcome: CallOutcome,
        *,
        idempotent: bool = True,
        remaining_s: float | None = None,
    ) -> float | None:
        """Return the delay before retrying, or ``None`` to stop.

        Only timeouts and transient failures are retried, only while
        ``attempt`` is below the per-provider budget, and only if the delay
        fits inside ``remaining_s``.
        """
        if not outcome.is_transient:
            return None
        if attempt >= self.attempts_for(idempotent=idempotent):
            return None
        delay = self.backoff(attempt)
        if remaining_s is not None and delay >= remaining_s:
            return None
        return delay
