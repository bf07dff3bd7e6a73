"""Background health monitor — probes providers independently of traffic.

Each provider gets its own asyncio task that pings it every
``probe_interval_s``.  Probe outcomes are recorded exactly like real calls,
so a provider whose circuit opened can close again even when no request
is targeting it.  Probes bypass the token bucket: they are health signal,
not user throughput.
"""

from __future__ import annotations

import asyncio
import time
from types import TracebackType
from typing import Callable

import structlog

from switchboard.providers.circuit_breaker import CircuitState
from switchboard.providers.registry import ProviderDescriptor, ProviderRegistry
from switchboard.providers.types import CallOutcome, ProviderSnapshot, classify_exception

logger = structlog.get_logger(__name__)


class HealthMonitor:
    """Periodic per-provider prober plus an optional snapshot publisher."""

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        on_snapshot: Callable[[list[ProviderSnapshot]], None] | None = None,
        snapshot_interval_s: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._on_snapshot = on_snapshot
        self._snapshot_interval = snapshot_interval_s
        self._clock = clock
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    # ── Lifecycle ────────────────────────────────────────────
    def start(self) -> None:
        """Spawn one probe loop per registered provider (idempotent)."""
        for descriptor in self._registry:
            task = self._tasks.get(descriptor.name)
            if task is None or task.done():
                self._tasks[descriptor.name] = asyncio.create_task(
                    self._probe_loop(descriptor),
                    name=f"health-probe:{descriptor.name}",
                )
        if self._on_snapshot is not None and "__snapshot__" not in self._tasks:
            self._tasks["__snapshot__"] = asyncio.create_task(
                self._snapshot_loop(), name="health-snapshot"
            )
        logger.info("health_monitor_started", providers=len(self._registry))

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("health_monitor_stopped")

    async def __aenter__(self) -> HealthMonitor:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # ── Probing ──────────────────────────────────────────────
    async def probe(self, name: str) -> CallOutcome | None:
        """Probe one provider now.  Returns ``None`` if the probe was skipped."""
        return await self._probe(self._registry.get(name))

    async def probe_all(self) -> dict[str, CallOutcome | None]:
        descriptors = list(self._registry)
        outcomes = await asyncio.gather(*(self._probe(d) for d in descriptors))
        return {d.name: o for d, o in zip(descriptors, outcomes)}

    async def _probe(self, descriptor: ProviderDescriptor) -> CallOutcome | None:
        name = descriptor.name
        if not descriptor.enabled:
            return None
        # Respect the breaker: wait out the cool-down, then use the
        # half-open trial permit like any other caller.
        if descriptor.breaker.state == CircuitState.OPEN:
            return None
        permit = descriptor.breaker.try_acquire()
        if permit is None:
            return None

        timeout = min(descriptor.config.probe_timeout_s, descriptor.config.max_latency_s)
        started = self._clock()
        try:
            await asyncio.wait_for(descriptor.provider.ping(timeout), timeout=timeout)
        except asyncio.CancelledError:
            self._registry.record_outcome(
                name, CallOutcome.cancelled(self._clock() - started), permit
            )
            raise
        except Exception as exc:
            outcome = classify_exception(exc, self._clock() - started)
            logger.warning(
                "health_probe_failed",
                provider=name,
                error=outcome.error,
                circuit_state=descriptor.breaker.state.value,
            )
        else:
            outcome = CallOutcome.success(self._clock() - started)
            logger.debug(
                "health_probe_ok",
                provider=name,
                latency_ms=float(f"{outcome.latency_s * 1000:.1f}"),
            )

        self._registry.record_outcome(name, outcome, permit)
        return outcome

    async def _probe_loop(self, descriptor: ProviderDescriptor) -> None:
        interval = descriptor.config.probe_interval_s
        while True:
            await asyncio.sleep(interval)
            try:
                await self._probe(descriptor)
            except Exception:
                # A broken probe must not kill the loop for this provider.
                logger.exception("health_probe_crashed", provider=descriptor.name)

    async def _snapshot_loop(self) -> None:
        assert self._on_snapshot is not None
        while True:
            await asyncio.sleep(self._snapshot_interval)
            try:
                self._on_snapshot(self._registry.snapshot())
            except Exception:
                logger.exception("health_snapshot_publish_failed")
