"""Core types for the provider orchestration core."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Iterator

from switchboard.exceptions import (
    ProviderError,
    ProviderPermanentError,
    ProviderRateLimitedError,
    ProviderTimeoutError,
)


class OutcomeKind(str, enum.Enum):
    """Result category of a single provider attempt."""

    SUCCESS = "success"
    FAILURE = "failure"
    RATE_LIMITED = "rate_limited"
    CIRCUIT_OPEN_SKIP = "circuit_open_skip"
    CANCELLED = "cancelled"


class FailureKind(str, enum.Enum):
    """Why an attempt failed.  Only TIMEOUT and TRANSIENT are health signals."""

    TIMEOUT = "timeout"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class ResultStatus(str, enum.Enum):
    """Terminal status of an operation, the only thing the caller sees."""

    SUCCESS = "success"
    NO_PROVIDER_AVAILABLE = "no_provider_available"
    ALL_PROVIDERS_EXHAUSTED = "all_providers_exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CallOutcome:
    """Outcome of one attempt.  Consumed immediately by the registry."""

    kind: OutcomeKind
    latency_s: float = 0.0
    failure: FailureKind | None = None
    accepted: bool = False
    error: str | None = None

    @classmethod
    def success(cls, latency_s: float) -> CallOutcome:
        return cls(OutcomeKind.SUCCESS, latency_s=latency_s, accepted=True)

    @classmethod
    def failed(
        cls,
        failure: FailureKind,
        latency_s: float,
        *,
        accepted: bool,
        error: str | None = None,
    ) -> CallOutcome:
        return cls(
            OutcomeKind.FAILURE,
            latency_s=latency_s,
            failure=failure,
            accepted=accepted,
            error=error,
        )

    @classmethod
    def rate_limited(cls, latency_s: float = 0.0, error: str | None = None) -> CallOutcome:
        return cls(OutcomeKind.RATE_LIMITED, latency_s=latency_s, error=error)

    @classmethod
    def circuit_open_skip(cls) -> CallOutcome:
        return cls(OutcomeKind.CIRCUIT_OPEN_SKIP)

    @classmethod
    def cancelled(cls, latency_s: float = 0.0) -> CallOutcome:
        # The call may have reached the provider before it was cancelled.
        return cls(OutcomeKind.CANCELLED, latency_s=latency_s, accepted=latency_s > 0)

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def is_transient(self) -> bool:
        return self.kind == OutcomeKind.FAILURE and self.failure in (
            FailureKind.TIMEOUT,
            FailureKind.TRANSIENT,
        )


def classify_exception(exc: BaseException, latency_s: float) -> CallOutcome:
    """Map an exception raised by a provider call onto a ``CallOutcome``.

    ``ProviderError`` subclasses carry their own classification.  Anything
    else is treated as transient and, unless it is known to have happened
    before the request left the process, as possibly accepted.
    """
    error = f"{type(exc).__name__}: {exc}"

    if isinstance(exc, ProviderRateLimitedError):
        return CallOutcome.rate_limited(latency_s, error=error)
    if isinstance(exc, ProviderTimeoutError):
        return CallOutcome.failed(
            FailureKind.TIMEOUT, latency_s, accepted=exc.accepted, error=error
        )
    if isinstance(exc, ProviderPermanentError):
        return CallOutcome.failed(
            FailureKind.PERMANENT, latency_s, accepted=exc.accepted, error=error
        )
    if isinstance(exc, ProviderError):
        kind = FailureKind.TRANSIENT if exc.retryable else FailureKind.PERMANENT
        return CallOutcome.failed(kind, latency_s, accepted=exc.accepted, error=error)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return CallOutcome.failed(FailureKind.TIMEOUT, latency_s, accepted=True, error=error)
    if isinstance(exc, ConnectionRefusedError):
        return CallOutcome.failed(FailureKind.TRANSIENT, latency_s, accepted=False, error=error)
    return CallOutcome.failed(FailureKind.TRANSIENT, latency_s, accepted=True, error=error)


@dataclass(frozen=True)
class OperationRequest:
    """One logical operation.  Owned by the caller, never mutated."""

    capability: str
    payload: Any = None
    timeout_s: float = 30.0
    idempotent: bool = True

    def __post_init__(self) -> None:
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        if not self.capability:
            raise ValueError("capability must be a non-empty tag")


@dataclass(frozen=True)
class TraceEntry:
    provider: str
    outcome: CallOutcome
    attempt: int = 1


@dataclass
class FallbackTrace:
    """Ordered record of every attempt made for one request."""

    entries: list[TraceEntry] = field(default_factory=list)

    def append(self, provider: str, outcome: CallOutcome, attempt: int = 1) -> None:
        self.entries.append(TraceEntry(provider, outcome, attempt))

    def attempts_for(self, provider: str) -> list[TraceEntry]:
        return [e for e in self.entries if e.provider == provider]

    @property
    def providers(self) -> list[str]:
        """Providers in the order they were first touched."""
        seen: list[str] = []
        for entry in self.entries:
            if entry.provider not in seen:
                seen.append(entry.provider)
        return seen

    @property
    def kinds(self) -> list[OutcomeKind]:
        return [e.outcome.kind for e in self.entries]

    def __iter__(self) -> Iterator[TraceEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class OperationResult:
    """Terminal result of an operation plus the trace explaining it."""

    status: ResultStatus
    trace: FallbackTrace
    value: Any = None
    provider: str | None = None
    error: str | None = None
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS


@dataclass(frozen=True)
class ProviderConfig:
    """Static configuration for a single provider.

    Attributes:
        name:          Unique identifier (e.g. "anthropic", "spotify").
        capabilities:  Capability tags this provider can serve.
        priority:      Lower = preferred.
        rate_capacity: Token bucket size (0 = unlimited).
        rate_refill_per_s: Continuous refill rate in tokens per second.
        max_latency_s: Upper bound for a single attempt.
        cb_window_size: Number of recent calls used for the failure ratio.
        cb_failure_ratio: Ratio that trips the breaker once the window is full.
        cb_consecutive_failures: Consecutive failures that trip the breaker.
        cb_cooldown_s:     Initial open → half-open cool-down.
        cb_cooldown_max_s: Cap for the doubled cool-down.
        retry_max_attempts: Attempts per provider for idempotent operations.
        retry_base_delay_s: Backoff base.
        retry_max_delay_s:  Backoff cap.
        retry_jitter:       Relative jitter applied to each backoff delay.
        probe_interval_s:   HealthMonitor probe period.
        probe_timeout_s:    Timeout for a single probe.
        count_rate_limited_as_failure: Feed rate-limit outcomes to the breaker.
        metadata:     Arbitrary extra config (model name, base URL, etc.).
    """

    name: str
    capabilities: tuple[str, ...] = ()
    priority: int = 10
    rate_capacity: int = 60
    rate_refill_per_s: float = 1.0
    max_latency_s: float = 30.0
    cb_window_size: int = 20
    cb_failure_ratio: float = 0.5
    cb_consecutive_failures: int = 5
    cb_cooldown_s: float = 30.0
    cb_cooldown_max_s: float = 300.0
    retry_max_attempts: int = 3
    retry_base_delay_s: float = 0.5
    retry_max_delay_s: float = 10.0
    retry_jitter: float = 0.2
    probe_interval_s: float = 60.0
    probe_timeout_s: float = 5.0
    count_rate_limited_as_failure: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True)
class ProviderSnapshot:
    """Point-in-time view of one provider for external monitoring."""

    name: str
    circuit_state: str
    latency_ema_ms: float | None
    error_rate_ema: float
    tokens_available: float | None
    enabled: bool
    priority: int
    capabilities: tuple[str, ...]
    total_calls: int = 0
    total_failures: int = 0
