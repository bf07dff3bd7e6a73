"""Rolling latency and error statistics for a single provider.

Uses exponential moving averages so recent behaviour dominates without
keeping a sample history.  Cumulative counters are kept alongside for
monitoring snapshots.
"""

from __future__ import annotations

import threading

from switchboard.providers.types import CallOutcome, OutcomeKind


class ProviderStats:
    """Thread-safe EMA tracker fed by real calls and health probes."""

    def __init__(self, provider_id: str, *, alpha: float = 0.3) -> None:
        if not 0.0 < alpha <= 1.0:
            raise ValueError("alpha must be within (0, 1]")
        self._provider_id = provider_id
        self._alpha = alpha
        self._lock = threading.Lock()

        self._latency_ema: float | None = None
        self._error_ema = 0.0

        # Cumulative counters (never reset)
        self._total_calls = 0
        self._total_failures = 0
        self._last_error: str | None = None

    def record(self, outcome: CallOutcome) -> None:
        """Fold one outcome into the averages.

        Only completed calls count; skips, local rate limits and
        cancellations carry no latency information.
        """
        if outcome.kind not in (OutcomeKind.SUCCESS, OutcomeKind.FAILURE):
            return
        failed = outcome.kind == OutcomeKind.FAILURE
        with self._lock:
            self._total_calls += 1
            if failed:
                self._total_failures += 1
                self._last_error = outcome.error
            self._error_ema = self._blend(self._error_ema, 1.0 if failed else 0.0)
            if outcome.latency_s > 0:
                latency_ms = outcome.latency_s * 1000
                if self._latency_ema is None:
                    self._latency_ema = latency_ms
                else:
                    self._latency_ema = self._blend(self._latency_ema, latency_ms)

    @property
    def latency_ema_ms(self) -> float | None:
        with self._lock:
            return self._latency_ema

    @property
    def sort_latency(self) -> float:
        """Latency key used for ordering; unmeasured providers sort first."""
        with self._lock:
            return self._latency_ema if self._latency_ema is not None else 0.0

    @property
    def error_rate_ema(self) -> float:
        with self._lock:
            return self._error_ema

    @property
    def total_calls(self) -> int:
        return self._total_calls

    @property
    def total_failures(self) -> int:
        return self._total_failures

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def _blend(self, current: float, sample: float) -> float:
        return self._alpha * sample + (1 - self._alpha) * current
