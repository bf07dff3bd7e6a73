"""Token-bucket rate limiter — throttles outbound calls per provider.

Tokens refill continuously at ``refill_per_second`` up to ``capacity``, so a
provider can absorb short bursts while its long-run rate stays bounded.
A capacity of 0 disables limiting entirely.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)


class TokenBucket:
    """Per-provider, thread-safe token bucket."""

    def __init__(
        self,
        provider_id: str,
        *,
        capacity: int = 60,
        refill_per_second: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        if refill_per_second < 0:
            raise ValueError("refill_per_second must be >= 0")

        self._provider_id = provider_id
        self._capacity = capacity
        self._refill_rate = refill_per_second
        self._clock = clock

        self._tokens = float(capacity)
        self._last_refill = clock()
        self._lock = threading.Lock()
        self._exhausted_logged = False

    @property
    def unlimited(self) -> bool:
        return self._capacity == 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> float | None:
        """Current token level (``None`` when unlimited)."""
        if self.unlimited:
            return None
        with self._lock:
            self._refill()
            return self._tokens

    def try_acquire(self, tokens: int = 1) -> bool:
        """Take ``tokens`` if available.  Never blocks."""
        if self.unlimited:
            return True
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                self._exhausted_logged = False
                return True

            if not self._exhausted_logged:
                self._exhausted_logged = True
                logger.debug(
                    "rate_limit_exhausted",
                    provider=self._provider_id,
                    available=round(self._tokens, 3),
                    capacity=self._capacity,
                )
            return False

    def time_until_available(self, tokens: int = 1) -> float:
        """Seconds until ``tokens`` could be acquired (``inf`` if never)."""
        if self.unlimited:
            return 0.0
        with self._lock:
            self._refill()
            missing = tokens - self._tokens
            if missing <= 0:
                return 0.0
            if self._refill_rate <= 0 or tokens > self._capacity:
                return float("inf")
            return missing / self._refill_rate

    async def acquire(self, timeout: float, tokens: int = 1) -> bool:
        """Wait up to ``timeout`` seconds for ``tokens``.  Returns success."""
        deadline = self._clock() + timeout
        while True:
            if self.try_acquire(tokens):
                return True
            wait = self.time_until_available(tokens)
            remaining = deadline - self._clock()
            if wait > remaining or remaining <= 0:
                return False
            # Another waiter may take the token first; loop and re-check.
            await asyncio.sleep(max(wait, 0.001))

    def reset(self) -> None:
        """Refill the bucket to capacity (for admin override)."""
        with self._lock:
            self._tokens = float(self._capacity)
            self._last_refill = self._clock()
            self._exhausted_logged = False

    def _refill(self) -> None:
        """Caller must hold lock."""
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._last_refill = now
        if elapsed and self._refill_rate:
            self._tokens = min(float(self._capacity), self._tokens + elapsed * self._refill_rate)
