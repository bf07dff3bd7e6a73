"""HTTP provider adapter — a ``ProviderPort`` backed by ``httpx``.

The HTTP call itself is a pure function with no retry logic; the
orchestrator handles retries, failover and circuit breaking.  This module
only translates transport and status-code failures into the provider error
taxonomy, marking whether the remote side may already have acted on the
request.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from switchboard.exceptions import (
    ProviderPermanentError,
    ProviderRateLimitedError,
    ProviderTimeoutError,
    ProviderTransientError,
)
from switchboard.providers.base import ProviderPort

logger = structlog.get_logger(__name__)


class HttpProvider(ProviderPort):
    """POSTs JSON payloads to a single endpoint.

    Args:
        name: Provider name, used for logging only.
        base_url: Service root, e.g. ``https://api.example.com/v1``.
        invoke_path: Path receiving the operation payload.
        health_path: Path probed by ``ping`` with a GET.
        headers: Extra headers (auth tokens, API versions).
        client: Pre-built client, mostly for tests (``httpx.MockTransport``).
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        *,
        invoke_path: str = "/",
        health_path: str = "/health",
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._name = name
        self._invoke_path = invoke_path
        self._health_path = health_path
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json", **(headers or {})},
        )

    async def invoke(self, payload: Any, timeout: float) -> Any:
        response = await self._request("POST", self._invoke_path, timeout, json=payload)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def ping(self, timeout: float) -> None:
        await self._request("GET", self._health_path, timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, timeout=timeout, **kwargs)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
            # Never reached the provider.
            raise ProviderTransientError(f"{type(exc).__name__}: {exc}", accepted=False) from exc
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(f"{type(exc).__name__}: {exc}", accepted=True) from exc
        except httpx.TransportError as exc:
            raise ProviderTransientError(f"{type(exc).__name__}: {exc}", accepted=True) from exc

        status = response.status_code
        if status < 400:
            return response

        detail = f"HTTP {status} from {self._name} {method} {path}"
        logger.debug("http_provider_error_status", provider=self._name, status=status)
        if status == 429:
            raise ProviderRateLimitedError(detail)
        if status == 503:
            raise ProviderTransientError(detail, accepted=False)
        if status == 408 or status == 504:
            raise ProviderTimeoutError(detail, accepted=True)
        if status >= 500:
            raise ProviderTransientError(detail, accepted=True)
        raise ProviderPermanentError(detail, accepted=False)
