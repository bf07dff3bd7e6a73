"""Provider port — the single interface the orchestrator calls through.

Every backend (AI completion service, music catalog API, automation server)
is wrapped in a ``ProviderPort``.  The orchestrator never looks at payloads
or responses; it only cares whether a call succeeded, failed, or timed out.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable


class ProviderPort(ABC):
    """Outbound port implemented once per provider."""

    @abstractmethod
    async def invoke(self, payload: Any, timeout: float) -> Any:
        """Perform the call.

        Raise a ``ProviderError`` subclass to describe a failure precisely;
        any other exception is classified conservatively.
        """

    async def ping(self, timeout: float) -> None:
        """Lightweight health probe.  Defaults to invoking with no payload."""
        await self.invoke(None, timeout)

    async def close(self) -> None:
        """Release any underlying resources."""


class CallableProvider(ProviderPort):
    """Adapts a plain coroutine function ``fn(payload, timeout)``."""

    def __init__(
        self,
        fn: Callable[[Any, float], Awaitable[Any]],
        *,
        ping: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._fn = fn
        self._ping = ping

    async def invoke(self, payload: Any, timeout: float) -> Any:
        return await self._fn(payload, timeout)

    async def ping(self, timeout: float) -> None:
        if self._ping is None:
            await super().ping(timeout)
        else:
            await self._ping(timeout)
