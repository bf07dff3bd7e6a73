"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from switchboard.providers.base import ProviderPort
from switchboard.providers.registry import ProviderDescriptor, ProviderRegistry
from switchboard.providers.types import ProviderConfig


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedProvider(ProviderPort):
    """Provider whose behaviour is a list of steps, consumed one per call.

    A step is either an exception instance (raised), a callable returning
    a value, or a plain value.  The last step repeats forever.  ``delay``
    simulates latency; ``in_flight`` / ``max_in_flight`` track overlap.
    """

    shared_in_flight = 0
    shared_max_in_flight = 0

    def __init__(self, name: str, *steps: Any, delay: float = 0.0, ping_error: Exception | None = None) -> None:
        self.name = name
        self._steps = list(steps) or [f"ok:{name}"]
        self.delay = delay
        self.ping_error = ping_error
        self.calls: list[Any] = []
        self.timeouts: list[float] = []
        self.pings = 0

    async def invoke(self, payload: Any, timeout: float) -> Any:
        self.calls.append(payload)
        self.timeouts.append(timeout)
        cls = type(self)
        cls.shared_in_flight += 1
        cls.shared_max_in_flight = max(cls.shared_max_in_flight, cls.shared_in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            step = self._steps[min(len(self.calls) - 1, len(self._steps) - 1)]
            if isinstance(step, BaseException):
                raise step
            if callable(step):
                return step()
            return step
        finally:
            cls.shared_in_flight -= 1

    async def ping(self, timeout: float) -> None:
        self.pings += 1
        if self.ping_error is not None:
            raise self.ping_error


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_overlap_counters() -> None:
    ScriptedProvider.shared_in_flight = 0
    ScriptedProvider.shared_max_in_flight = 0


@pytest.fixture
def make_config() -> Callable[..., ProviderConfig]:
    def _make(name: str, priority: int = 1, **overrides: Any) -> ProviderConfig:
        defaults: dict[str, Any] = {
            "capabilities": ("chat-completion",),
            "rate_capacity": 0,
            "retry_base_delay_s": 0.01,
            "retry_max_delay_s": 0.05,
            "max_latency_s": 5.0,
        }
        defaults.update(overrides)
        return ProviderConfig(name=name, priority=priority, **defaults)

    return _make


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture
def add_provider(
    registry: ProviderRegistry,
    make_config: Callable[..., ProviderConfig],
) -> Callable[..., ProviderDescriptor]:
    """Register a ScriptedProvider; returns its descriptor."""

    def _add(
        provider: ScriptedProvider,
        priority: int = 1,
        *,
        clock: Callable[[], float] | None = None,
        **overrides: Any,
    ) -> ProviderDescriptor:
        config = make_config(provider.name, priority, **overrides)
        kwargs = {"clock": clock} if clock is not None else {}
        return registry.register(ProviderDescriptor.from_config(config, provider, **kwargs))

    return _add


@pytest.fixture
def scripted() -> type[ScriptedProvider]:
    return ScriptedProvider
