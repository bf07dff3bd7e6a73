"""Orchestrator — the main entry-point for provider calls.

Composes ProviderRegistry, CircuitBreaker, TokenBucket and RetryPolicy into
a single fallback loop.  Callers hand in a capability tag and an opaque
payload; the orchestrator picks candidates, throttles, retries, fails over
and returns a typed result together with the trace of every attempt.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

import structlog

from switchboard.providers.circuit_breaker import CircuitState, Permit
from switchboard.providers.registry import ProviderDescriptor, ProviderRegistry
from switchboard.providers.retry import RetryPolicy
from switchboard.providers.types import (
    CallOutcome,
    FailureKind,
    FallbackTrace,
    OperationRequest,
    OperationResult,
    OutcomeKind,
    ResultStatus,
    classify_exception,
)

logger = structlog.get_logger(__name__)

DEFAULT_TOKEN_WAIT_S = 2.0


class _Cancelled(Exception):
    """The caller's cancel event fired while waiting."""


class _AttemptTimeout(Exception):
    """The per-attempt timeout elapsed before the call completed."""


async def _guarded(
    aw: Awaitable[Any],
    *,
    timeout: float | None,
    cancel: asyncio.Event | None,
) -> Any:
    """Await ``aw`` bounded by ``timeout`` and interruptible by ``cancel``.

    On timeout or cancellation the inner task is cancelled and awaited, so
    nothing keeps running behind the caller's back.
    """
    task = asyncio.ensure_future(aw)
    waiters: set[asyncio.Future[Any]] = {task}
    cancel_waiter: asyncio.Future[Any] | None = None
    if cancel is not None:
        cancel_waiter = asyncio.ensure_future(cancel.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    if cancel_waiter is not None and cancel_waiter in done:
        raise _Cancelled()
    raise _AttemptTimeout()


def _deadline_error(request: OperationRequest, last_error: str | None) -> str:
    message = f"deadline of {request.timeout_s:g}s exceeded"
    if last_error:
        return f"{message} (last error: {last_error})"
    return message


class Orchestrator:
    """Routes operations across interchangeable providers.

    Usage::

        orchestrator = Orchestrator(registry)

        result = await orchestrator.execute(
            "chat-completion", {"prompt": "..."}, timeout_s=10.0,
        )
        if result.ok:
            use(result.value)

    Expected failures never raise: the result carries a ``ResultStatus``
    and the ``FallbackTrace`` explaining it.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        retry_policy: RetryPolicy | None = None,
        wait_for_tokens: bool = False,
        token_wait_max_s: float = DEFAULT_TOKEN_WAIT_S,
        clock: Callable[[], float] = time.monotonic,
        on_result: Callable[[OperationRequest, OperationResult], None] | None = None,
    ) -> None:
        self._registry = registry
        self._retry_override = retry_policy
        self._wait_for_tokens = wait_for_tokens
        self._token_wait_max = token_wait_max_s
        self._clock = clock
        self._on_result = on_result

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    # ── Main entry-point ─────────────────────────────────────
    async def execute(
        self,
        capability: str,
        payload: Any = None,
        *,
        timeout_s: float = 30.0,
        idempotent: bool = True,
        cancel: asyncio.Event | None = None,
    ) -> OperationResult:
        """Execute ``payload`` on the best available provider for ``capability``.

        Args:
            capability: Capability tag used to select candidates.
            payload: Opaque request body handed to ``ProviderPort.invoke``.
            timeout_s: Overall budget including retries and backoff.
            idempotent: Whether re-execution is safe (enables retry/fallback
                after ambiguous failures).
            cancel: Optional event; setting it aborts the operation.

        Raises:
            UnknownCapabilityError: No provider was ever registered for the tag.
        """
        request = OperationRequest(
            capability=capability,
            payload=payload,
            timeout_s=timeout_s,
            idempotent=idempotent,
        )
        return await self.run(request, cancel=cancel)

    async def run(
        self,
        request: OperationRequest,
        *,
        cancel: asyncio.Event | None = None,
    ) -> OperationResult:
        start = self._clock()
        deadline = start + request.timeout_s
        trace = FallbackTrace()
        log = logger.bind(capability=request.capability, idempotent=request.idempotent)

        candidates = self._registry.eligible(request.capability)
        if not candidates:
            log.warning("no_available_providers")
            return self._finish(
                request,
                OperationResult(
                    status=ResultStatus.NO_PROVIDER_AVAILABLE,
                    trace=trace,
                    error="no eligible provider",
                ),
                start,
            )

        last_error: str | None = None
        for descriptor in candidates:
            if self._clock() >= deadline:
                last_error = _deadline_error(request, last_error)
                log.warning("operation_deadline_exceeded", attempted=trace.providers)
                break

            try:
                outcome, value = await self._try_provider(
                    descriptor, request, deadline, trace, cancel
                )
            except _Cancelled:
                log.info("operation_cancelled", provider=descriptor.name)
                return self._finish(
                    request,
                    OperationResult(
                        status=ResultStatus.CANCELLED,
                        trace=trace,
                        error="cancelled by caller",
                    ),
                    start,
                )

            if outcome is None:
                last_error = _deadline_error(request, last_error)
                log.warning("operation_deadline_exceeded", attempted=trace.providers)
                break

            if outcome.is_success:
                if len(trace.providers) > 1:
                    log.info(
                        "provider_failover_success",
                        provider=descriptor.name,
                        attempts=len(trace),
                        failed_providers=[p for p in trace.providers if p != descriptor.name],
                    )
                return self._finish(
                    request,
                    OperationResult(
                        status=ResultStatus.SUCCESS,
                        trace=trace,
                        value=value,
                        provider=descriptor.name,
                    ),
                    start,
                )

            if outcome.error:
                last_error = outcome.error

            if (
                not request.idempotent
                and outcome.kind == OutcomeKind.FAILURE
                and outcome.accepted
            ):
                # The provider may have applied the effect; another provider
                # could apply it a second time.
                log.warning(
                    "fallback_blocked_non_idempotent",
                    provider=descriptor.name,
                    error=outcome.error,
                )
                break

        log.warning(
            "all_providers_exhausted",
            attempted=trace.providers,
            attempts=len(trace),
            last_error=last_error,
        )
        return self._finish(
            request,
            OperationResult(
                status=ResultStatus.ALL_PROVIDERS_EXHAUSTED,
                trace=trace,
                error=last_error,
            ),
            start,
        )

    # ── Provider-level attempts (with retries) ───────────────
    async def _try_provider(
        self,
        descriptor: ProviderDescriptor,
        request: OperationRequest,
        deadline: float,
        trace: FallbackTrace,
        cancel: asyncio.Event | None,
    ) -> tuple[CallOutcome | None, Any]:
        """Run up to the policy's attempt budget against one provider.

        Returns ``(None, None)`` when the deadline passed before a call
        could be made.
        """
        name = descriptor.name
        policy = self._retry_override or descriptor.retry_policy
        attempt = 0

        while True:
            attempt += 1
            log = logger.bind(provider=name, attempt=attempt, capability=request.capability)

            permit = descriptor.breaker.try_acquire()
            if permit is None:
                outcome = CallOutcome.circuit_open_skip()
                trace.append(name, outcome, attempt)
                log.debug("provider_circuit_open_skip")
                return outcome, None

            try:
                acquired = await self._acquire_token(descriptor, permit, deadline, cancel)
            except _Cancelled:
                trace.append(name, CallOutcome.cancelled(), attempt)
                raise
            if not acquired:
                outcome = CallOutcome.rate_limited()
                self._registry.record_outcome(name, outcome, permit)
                trace.append(name, outcome, attempt)
                log.info("provider_rate_limited")
                return outcome, None

            remaining = deadline - self._clock()
            if remaining <= 0:
                descriptor.breaker.release(permit)
                trace.append(
                    name,
                    CallOutcome.failed(
                        FailureKind.TIMEOUT,
                        0.0,
                        accepted=False,
                        error="request deadline reached before dispatch",
                    ),
                    attempt,
                )
                log.info("provider_skipped_deadline_reached")
                return None, None
            per_attempt = min(remaining, descriptor.config.max_latency_s)

            started = self._clock()
            try:
                value = await _guarded(
                    descriptor.provider.invoke(request.payload, per_attempt),
                    timeout=per_attempt,
                    cancel=cancel,
                )
            except _Cancelled:
                outcome = CallOutcome.cancelled(self._clock() - started)
                self._registry.record_outcome(name, outcome, permit)
                trace.append(name, outcome, attempt)
                raise
            except asyncio.CancelledError:
                self._registry.record_outcome(
                    name, CallOutcome.cancelled(self._clock() - started), permit
                )
                raise
            except _AttemptTimeout:
                outcome = classify_exception(
                    asyncio.TimeoutError(f"no response within {per_attempt:.3f}s"),
                    self._clock() - started,
                )
            except Exception as exc:
                outcome = classify_exception(exc, self._clock() - started)
            else:
                outcome = CallOutcome.success(self._clock() - started)
                self._registry.record_outcome(name, outcome, permit)
                trace.append(name, outcome, attempt)
                log.info(
                    "provider_request_success",
                    latency_ms=float(f"{outcome.latency_s * 1000:.1f}"),
                )
                return outcome, value

            self._registry.record_outcome(name, outcome, permit)
            trace.append(name, outcome, attempt)
            log.warning(
                "provider_request_failed",
                kind=outcome.kind.value,
                failure=outcome.failure.value if outcome.failure else None,
                accepted=outcome.accepted,
                error=outcome.error,
                latency_ms=float(f"{outcome.latency_s * 1000:.1f}"),
            )

            delay = policy.should_retry(
                attempt,
                outcome,
                idempotent=request.idempotent,
                remaining_s=deadline - self._clock(),
            )
            if delay is None:
                return outcome, None
            if descriptor.breaker.state == CircuitState.OPEN:
                log.info("provider_retry_skipped_circuit_open")
                return outcome, None

            log.info("provider_retry_scheduled", delay_s=round(delay, 3))
            try:
                await _guarded(asyncio.sleep(delay), timeout=None, cancel=cancel)
            except _Cancelled:
                trace.append(name, CallOutcome.cancelled(), attempt + 1)
                raise

    async def _acquire_token(
        self,
        descriptor: ProviderDescriptor,
        permit: Permit,
        deadline: float,
        cancel: asyncio.Event | None,
    ) -> bool:
        limiter = descriptor.limiter
        if limiter.try_acquire():
            return True
        if not self._wait_for_tokens:
            return False

        budget = min(deadline - self._clock(), self._token_wait_max)
        if budget <= 0:
            return False
        try:
            return bool(
                await _guarded(limiter.acquire(budget), timeout=budget, cancel=cancel)
            )
        except _AttemptTimeout:
            return False
        except (_Cancelled, asyncio.CancelledError):
            descriptor.breaker.release(permit)
            raise

    def _finish(
        self,
        request: OperationRequest,
        result: OperationResult,
        start: float,
    ) -> OperationResult:
        result.elapsed_s = self._clock() - start
        if self._on_result is not None:
            self._on_result(request, result)
        return result
