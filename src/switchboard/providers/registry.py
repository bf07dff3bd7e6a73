"""Provider registry — holds descriptors and answers "who can serve this?".

Filters out disabled and circuit-open providers, then orders the remaining
candidates by static priority, recent latency, and registration order.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator

import structlog

from switchboard.exceptions import DuplicateProviderError, UnknownCapabilityError, UnknownProviderError
from switchboard.providers.base import ProviderPort
from switchboard.providers.circuit_breaker import CircuitBreaker, CircuitState, Permit
from switchboard.providers.rate_limiter import TokenBucket
from switchboard.providers.retry import RetryPolicy
from switchboard.providers.stats import ProviderStats
from switchboard.providers.types import (
    CallOutcome,
    FailureKind,
    OutcomeKind,
    ProviderConfig,
    ProviderSnapshot,
)

logger = structlog.get_logger(__name__)


@dataclass(eq=False)
class ProviderDescriptor:
    """A provider plus the resilience components it owns."""

    config: ProviderConfig
    provider: ProviderPort
    limiter: TokenBucket
    breaker: CircuitBreaker
    retry_policy: RetryPolicy
    stats: ProviderStats
    enabled: bool = True
    order: int = field(default=-1)

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        provider: ProviderPort,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> ProviderDescriptor:
        """Build a descriptor with components sized from ``config``."""
        name = config.name
        return cls(
            config=config,
            provider=provider,
            limiter=TokenBucket(
                name,
                capacity=config.rate_capacity,
                refill_per_second=config.rate_refill_per_s,
                clock=clock,
            ),
            breaker=CircuitBreaker(
                name,
                window_size=config.cb_window_size,
                failure_ratio=config.cb_failure_ratio,
                consecutive_failures=config.cb_consecutive_failures,
                cooldown_seconds=config.cb_cooldown_s,
                max_cooldown_seconds=config.cb_cooldown_max_s,
                clock=clock,
            ),
            retry_policy=RetryPolicy(
                max_attempts=config.retry_max_attempts,
                base_delay_s=config.retry_base_delay_s,
                max_delay_s=config.retry_max_delay_s,
                jitter=config.retry_jitter,
            ),
            stats=ProviderStats(name),
        )

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def priority(self) -> int:
        return self.config.priority

    def snapshot(self) -> ProviderSnapshot:
        return ProviderSnapshot(
            name=self.name,
            circuit_state=self.breaker.state.value,
            latency_ema_ms=self.stats.latency_ema_ms,
            error_rate_ema=self.stats.error_rate_ema,
            tokens_available=self.limiter.available,
            enabled=self.enabled,
            priority=self.priority,
            capabilities=self.config.capabilities,
            total_calls=self.stats.total_calls,
            total_failures=self.stats.total_failures,
        )


class ProviderRegistry:
    """Process-wide provider table, shared by every in-flight operation.

    The registry lock only guards membership.  Per-provider state lives in
    each descriptor's own components, so unrelated providers never contend.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ProviderDescriptor] = {}
        self._capabilities: set[str] = set()
        self._lock = threading.Lock()

    # ── Membership ───────────────────────────────────────────
    def register(self, descriptor: ProviderDescriptor) -> ProviderDescriptor:
        with self._lock:
            if descriptor.name in self._providers:
                raise DuplicateProviderError(descriptor.name)
            descriptor.order = len(self._providers)
            self._providers[descriptor.name] = descriptor
            self._capabilities.update(descriptor.config.capabilities)
        logger.info(
            "provider_registered",
            provider=descriptor.name,
            capabilities=list(descriptor.config.capabilities),
            priority=descriptor.priority,
        )
        return descriptor

    def get(self, name: str) -> ProviderDescriptor:
        try:
            return self._providers[name]
        except KeyError:
            raise UnknownProviderError(name) from None

    def capabilities(self) -> set[str]:
        with self._lock:
            return set(self._capabilities)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def __iter__(self) -> Iterator[ProviderDescriptor]:
        with self._lock:
            descriptors = list(self._providers.values())
        return iter(descriptors)

    # ── Selection ────────────────────────────────────────────
    def eligible(self, capability: str) -> list[ProviderDescriptor]:
        """Candidates for ``capability`` in fallback order."""
        with self._lock:
            if capability not in self._capabilities:
                raise UnknownCapabilityError(capability)
            descriptors = list(self._providers.values())

        candidates: list[ProviderDescriptor] = []
        for descriptor in descriptors:
            if not descriptor.config.supports(capability):
                continue
            if not descriptor.enabled:
                logger.debug("provider_disabled", provider=descriptor.name)
                continue
            if descriptor.breaker.state == CircuitState.OPEN:
                logger.debug("provider_circuit_open", provider=descriptor.name)
                continue
            candidates.append(descriptor)

        return sorted(
            candidates,
            key=lambda d: (d.priority, d.stats.sort_latency, d.order),
        )

    # ── Outcome reporting ────────────────────────────────────
    def record_outcome(
        self,
        name: str,
        outcome: CallOutcome,
        permit: Permit | None = None,
    ) -> None:
        """Update statistics and forward the outcome to the breaker.

        ``permit`` is the breaker admission the call was made under; a stale
        permit still feeds the statistics but cannot move the circuit.
        """
        descriptor = self.get(name)
        descriptor.stats.record(outcome)
        breaker = descriptor.breaker

        if outcome.kind == OutcomeKind.SUCCESS:
            breaker.record_success(permit)
        elif outcome.kind == OutcomeKind.FAILURE:
            if outcome.failure == FailureKind.PERMANENT:
                breaker.release(permit)
            else:
                breaker.record_failure(permit)
        elif outcome.kind == OutcomeKind.RATE_LIMITED:
            if descriptor.config.count_rate_limited_as_failure:
                breaker.record_failure(permit)
            else:
                breaker.release(permit)
        elif outcome.kind == OutcomeKind.CANCELLED:
            breaker.release(permit)

    # ── Administration ───────────────────────────────────────
    def disable(self, name: str) -> None:
        descriptor = self.get(name)
        descriptor.enabled = False
        logger.warning("provider_disabled_by_admin", provider=name)

    def enable(self, name: str) -> None:
        descriptor = self.get(name)
        descriptor.enabled = True
        logger.info("provider_enabled_by_admin", provider=name)

    def reset(self, name: str) -> None:
        """Admin reset: closes the circuit and refills the token bucket."""
        descriptor = self.get(name)
        descriptor.breaker.reset()
        descriptor.limiter.reset()
        logger.info("provider_admin_reset", provider=name)

    def snapshot(self) -> list[ProviderSnapshot]:
        return [descriptor.snapshot() for descriptor in self]
