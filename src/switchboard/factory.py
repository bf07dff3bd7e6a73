"""Wiring helpers — turn ``Settings`` plus provider clients into live objects.

The registry is built explicitly and passed by reference; nothing here
keeps module-level state.
"""

from __future__ import annotations

import time
from typing import Callable, Mapping, TypeVar

import structlog

from switchboard.config import ProviderSettings, Settings
from switchboard.exceptions import ConfigurationError
from switchboard.observability import configure_logging, metrics
from switchboard.providers.base import ProviderPort
from switchboard.providers.monitor import HealthMonitor
from switchboard.providers.orchestrator import Orchestrator
from switchboard.providers.registry import ProviderDescriptor, ProviderRegistry
from switchboard.providers.types import ProviderConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _pick(value: T | None, default: T) -> T:
    return default if value is None else value


def configure_observability(settings: Settings) -> None:
    """Apply the logging settings and tag every log line with ``app_name``.

    Call once at process start, before building the registry.
    """
    configure_logging(log_level=settings.log_level, json_logs=settings.json_logs)
    structlog.contextvars.bind_contextvars(app=settings.app_name)
    logger.info(
        "switchboard_starting",
        providers=[p.name for p in settings.providers],
        prometheus_enabled=settings.prometheus_enabled,
    )


def build_provider_config(provider: ProviderSettings, settings: Settings) -> ProviderConfig:
    """Merge one provider's overrides with the global defaults."""
    return ProviderConfig(
        name=provider.name,
        capabilities=tuple(provider.capabilities),
        priority=provider.priority,
        rate_capacity=_pick(provider.rate_capacity, settings.rate_capacity),
        rate_refill_per_s=_pick(provider.rate_refill_per_s, settings.rate_refill_per_s),
        max_latency_s=_pick(provider.max_latency_s, settings.provider_max_latency_s),
        cb_window_size=_pick(provider.cb_window_size, settings.circuit_breaker_window_size),
        cb_failure_ratio=_pick(provider.cb_failure_ratio, settings.circuit_breaker_failure_ratio),
        cb_consecutive_failures=_pick(
            provider.cb_consecutive_failures, settings.circuit_breaker_consecutive_failures
        ),
        cb_cooldown_s=_pick(provider.cb_cooldown_s, settings.circuit_breaker_cooldown_seconds),
        cb_cooldown_max_s=_pick(
            provider.cb_cooldown_max_s, settings.circuit_breaker_cooldown_max_seconds
        ),
        retry_max_attempts=_pick(provider.retry_max_attempts, settings.retry_max_attempts),
        retry_base_delay_s=_pick(provider.retry_base_delay_s, settings.retry_base_delay_s),
        retry_max_delay_s=_pick(provider.retry_max_delay_s, settings.retry_max_delay_s),
        retry_jitter=settings.retry_jitter,
        probe_interval_s=_pick(provider.probe_interval_s, settings.health_probe_interval_s),
        probe_timeout_s=_pick(provider.probe_timeout_s, settings.health_probe_timeout_s),
        count_rate_limited_as_failure=_pick(
            provider.count_rate_limited_as_failure, settings.count_rate_limited_as_failure
        ),
        metadata=dict(provider.metadata),
    )


def build_provider_configs(settings: Settings) -> list[ProviderConfig]:
    """Build ProviderConfig list from settings values."""
    return [build_provider_config(p, settings) for p in settings.providers]


def build_registry(
    settings: Settings,
    clients: Mapping[str, ProviderPort],
    *,
    clock: Callable[[], float] = time.monotonic,
) -> ProviderRegistry:
    """Register every configured provider with its client.

    Raises:
        ConfigurationError: A configured provider has no client, or no
            providers are configured at all.
    """
    if not settings.providers:
        raise ConfigurationError("no providers configured")

    missing = [p.name for p in settings.providers if p.name not in clients]
    if missing:
        raise ConfigurationError(f"no client supplied for providers: {', '.join(missing)}")

    configured = {p.name for p in settings.providers}
    unused = sorted(set(clients) - configured)
    if unused:
        logger.warning("unconfigured_provider_clients_ignored", providers=unused)

    registry = ProviderRegistry()
    for provider in settings.providers:
        config = build_provider_config(provider, settings)
        registry.register(ProviderDescriptor.from_config(config, clients[provider.name], clock=clock))
        if not provider.enabled:
            registry.disable(provider.name)
    return registry


def build_orchestrator(settings: Settings, registry: ProviderRegistry) -> Orchestrator:
    return Orchestrator(
        registry,
        wait_for_tokens=settings.wait_for_tokens,
        token_wait_max_s=settings.token_wait_max_s,
        on_result=metrics.record_result if settings.prometheus_enabled else None,
    )


def build_monitor(settings: Settings, registry: ProviderRegistry) -> HealthMonitor:
    return HealthMonitor(
        registry,
        on_snapshot=metrics.publish_snapshot if settings.prometheus_enabled else None,
        snapshot_interval_s=settings.snapshot_interval_s,
    )
