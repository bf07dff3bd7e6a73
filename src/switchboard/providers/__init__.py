"""Provider orchestration core.

Provides routing, failover, circuit breaking, rate limiting, retry
with backoff, and background health probing for interchangeable
outbound providers.
"""

from switchboard.providers.base import CallableProvider, ProviderPort
from switchboard.providers.circuit_breaker import CircuitBreaker, CircuitState, Permit
from switchboard.providers.monitor import HealthMonitor
from switchboard.providers.orchestrator import Orchestrator
from switchboard.providers.rate_limiter import TokenBucket
from switchboard.providers.registry import ProviderDescriptor, ProviderRegistry
from switchboard.providers.retry import RetryPolicy
from switchboard.providers.stats import ProviderStats
from switchboard.providers.types import (
    CallOutcome,
    FailureKind,
    FallbackTrace,
    OperationRequest,
    OperationResult,
    OutcomeKind,
    ProviderConfig,
    ProviderSnapshot,
    ResultStatus,
    TraceEntry,
)

__all__ = [
    "CallOutcome",
    "CallableProvider",
    "CircuitBreaker",
    "CircuitState",
    "FailureKind",
    "FallbackTrace",
    "HealthMonitor",
    "OperationRequest",
    "OperationResult",
    "Orchestrator",
    "OutcomeKind",
    "Permit",
    "ProviderConfig",
    "ProviderDescriptor",
    "ProviderPort",
    "ProviderRegistry",
    "ProviderSnapshot",
    "ProviderStats",
    "ResultStatus",
    "RetryPolicy",
    "TokenBucket",
    "TraceEntry",
]
