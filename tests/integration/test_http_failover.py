"""End-to-end failover across HTTP providers built from settings."""

from __future__ import annotations

import httpx
import pytest

from switchboard.adapters.http import HttpProvider
from switchboard.config import get_settings
from switchboard.factory import build_monitor, build_orchestrator, build_registry
from switchboard.providers.circuit_breaker import CircuitState
from switchboard.providers.types import FailureKind, OutcomeKind, ResultStatus


def _http(name: str, handler) -> HttpProvider:
    base_url = f"https://{name}.test"
    client = httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(handler))
    return HttpProvider(name, base_url, invoke_path="/v1/complete", client=client)


@pytest.fixture
def settings():
    return get_settings(
        prometheus_enabled=False,
        retry_base_delay_s=0.01,
        retry_max_delay_s=0.02,
        circuit_breaker_consecutive_failures=3,
        providers=[
            {"name": "primary", "capabilities": ["chat-completion"], "priority": 1},
            {"name": "secondary", "capabilities": ["chat-completion"], "priority": 2},
        ],
    )


@pytest.mark.asyncio
async def test_outage_fails_over_and_recovers(settings) -> None:
    healthy = {"primary": False}

    def _primary(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200 if healthy["primary"] else 503)
        if not healthy["primary"]:
            return httpx.Response(503)
        return httpx.Response(200, json={"text": "from primary"})

    def _secondary(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"text": "from secondary"})

    registry = build_registry(
        settings, {"primary": _http("primary", _primary), "secondary": _http("secondary", _secondary)}
    )
    orchestrator = build_orchestrator(settings, registry)

    result = await orchestrator.execute("chat-completion", {"prompt": "hi"}, timeout_s=5.0)

    assert result.status == ResultStatus.SUCCESS
    assert result.value == {"text": "from secondary"}
    primary_attempts = result.trace.attempts_for("primary")
    assert len(primary_attempts) == 3
    assert all(e.outcome.failure == FailureKind.TRANSIENT for e in primary_attempts)
    assert registry.get("primary").breaker.state == CircuitState.OPEN

    # Open circuit: the primary is skipped without a network call
    result = await orchestrator.execute("chat-completion", {"prompt": "again"}, timeout_s=5.0)
    assert result.trace.providers == ["secondary"]

    # Once recovered, an admin reset plus a probe brings it back in front
    healthy["primary"] = True
    registry.reset("primary")
    outcome = await build_monitor(settings, registry).probe("primary")
    assert outcome is not None and outcome.kind == OutcomeKind.SUCCESS

    result = await orchestrator.execute("chat-completion", {"prompt": "back"}, timeout_s=5.0)
    assert result.provider == "primary"


@pytest.mark.asyncio
async def test_non_idempotent_request_not_replayed_after_ambiguous_error(settings) -> None:
    primary_calls: list[httpx.Request] = []
    secondary_calls: list[httpx.Request] = []

    def _primary(request: httpx.Request) -> httpx.Response:
        primary_calls.append(request)
        return httpx.Response(502)

    def _secondary(request: httpx.Request) -> httpx.Response:
        secondary_calls.append(request)
        return httpx.Response(200, json={"charged": True})

    registry = build_registry(
        settings, {"primary": _http("primary", _primary), "secondary": _http("secondary", _secondary)}
    )
    orchestrator = build_orchestrator(settings, registry)

    result = await orchestrator.execute(
        "chat-completion", {"charge": 10}, timeout_s=5.0, idempotent=False
    )

    assert result.status == ResultStatus.ALL_PROVIDERS_EXHAUSTED
    assert len(primary_calls) == 1
    assert secondary_calls == []
