"""Prometheus metrics for provider orchestration."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from switchboard.providers.types import OperationRequest, OperationResult, ProviderSnapshot

# ── Operation metrics ────────────────────────────────────────
OPERATIONS_TOTAL = Counter(
    "switchboard_operations_total",
    "Total orchestrated operations by terminal status",
    ["capability", "status"],
)

OPERATION_DURATION = Histogram(
    "switchboard_operation_duration_seconds",
    "End-to-end operation duration including retries and fallback",
    ["capability"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

PROVIDER_ATTEMPTS = Counter(
    "switchboard_provider_attempts_total",
    "Provider attempts by outcome",
    ["provider", "outcome"],
)

FAILOVERS_TOTAL = Counter(
    "switchboard_failovers_total",
    "Operations that succeeded on a provider other than the first candidate",
    ["capability"],
)

# ── Provider health gauges ───────────────────────────────────
_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}

PROVIDER_CIRCUIT_STATE = Gauge(
    "switchboard_provider_circuit_state",
    "Circuit state (0=closed, 1=half_open, 2=open)",
    ["provider"],
)

PROVIDER_LATENCY_EMA = Gauge(
    "switchboard_provider_latency_ema_ms",
    "Exponential moving average of provider latency",
    ["provider"],
)

PROVIDER_ERROR_RATE_EMA = Gauge(
    "switchboard_provider_error_rate_ema",
    "Exponential moving average of provider error rate",
    ["provider"],
)

PROVIDER_TOKENS_AVAILABLE = Gauge(
    "switchboard_provider_tokens_available",
    "Token bucket level (absent for unlimited providers)",
    ["provider"],
)

PROVIDER_ENABLED = Gauge(
    "switchboard_provider_enabled",
    "1 if the provider is administratively enabled",
    ["provider"],
)


def record_result(request: OperationRequest, result: OperationResult) -> None:
    """Orchestrator ``on_result`` hook."""
    OPERATIONS_TOTAL.labels(capability=request.capability, status=result.status.value).inc()
    OPERATION_DURATION.labels(capability=request.capability).observe(result.elapsed_s)
    for entry in result.trace:
        PROVIDER_ATTEMPTS.labels(provider=entry.provider, outcome=entry.outcome.kind.value).inc()
    if result.ok and len(result.trace.providers) > 1:
        FAILOVERS_TOTAL.labels(capability=request.capability).inc()


def publish_snapshot(snapshots: list[ProviderSnapshot]) -> None:
    """HealthMonitor ``on_snapshot`` hook."""
    for snap in snapshots:
        PROVIDER_CIRCUIT_STATE.labels(provider=snap.name).set(
            _CIRCUIT_STATE_VALUES.get(snap.circuit_state, 0)
        )
        if snap.latency_ema_ms is not None:
            PROVIDER_LATENCY_EMA.labels(provider=snap.name).set(snap.latency_ema_ms)
        PROVIDER_ERROR_RATE_EMA.labels(provider=snap.name).set(snap.error_rate_ema)
        if snap.tokens_available is not None:
            PROVIDER_TOKENS_AVAILABLE.labels(provider=snap.name).set(snap.tokens_available)
        PROVIDER_ENABLED.labels(provider=snap.name).set(1 if snap.enabled else 0)
