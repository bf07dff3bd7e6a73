"""Switchboard — Orchestration Configuration."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseModel):
    """Per-provider configuration.

    Any field left as ``None`` inherits the matching global default from
    ``Settings``.
    """

    name: str
    capabilities: list[str]
    priority: int = 10
    enabled: bool = True

    rate_capacity: int | None = None
    rate_refill_per_s: float | None = None
    max_latency_s: float | None = None

    cb_window_size: int | None = None
    cb_failure_ratio: float | None = None
    cb_consecutive_failures: int | None = None
    cb_cooldown_s: float | None = None
    cb_cooldown_max_s: float | None = None

    retry_max_attempts: int | None = None
    retry_base_delay_s: float | None = None
    retry_max_delay_s: float | None = None

    probe_interval_s: float | None = None
    probe_timeout_s: float | None = None
    count_rate_limited_as_failure: bool | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("capabilities")
    @classmethod
    def _require_capabilities(cls, v: list[str]) -> list[str]:
        tags = [t.strip() for t in v if t.strip()]
        if not tags:
            raise ValueError("a provider must advertise at least one capability")
        return tags


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_prefix="SWITCHBOARD_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "switchboard"
    log_level: str = "INFO"
    json_logs: bool = False

    # ── Providers ────────────────────────────────────────────
    providers: list[ProviderSettings] = Field(default_factory=list)

    # Rate limiting (token bucket)
    rate_capacity: int = 60
    rate_refill_per_s: float = 1.0
    wait_for_tokens: bool = False
    token_wait_max_s: float = 2.0
    count_rate_limited_as_failure: bool = False

    # Circuit breaker
    circuit_breaker_window_size: int = 20
    circuit_breaker_failure_ratio: float = 0.5
    circuit_breaker_consecutive_failures: int = 5
    circuit_breaker_cooldown_seconds: float = 30.0
    circuit_breaker_cooldown_max_seconds: float = 300.0

    # Retry
    retry_max_attempts: int = 3
    retry_base_delay_s: float = 0.5
    retry_max_delay_s: float = 10.0
    retry_jitter: float = 0.2

    # Per-attempt latency ceiling
    provider_max_latency_s: float = 30.0

    # Health monitoring
    health_probe_interval_s: float = 60.0
    health_probe_timeout_s: float = 5.0
    snapshot_interval_s: float = 15.0

    # ── Observability ────────────────────────────────────────
    prometheus_enabled: bool = True

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("circuit_breaker_failure_ratio")
    @classmethod
    def _validate_ratio(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("circuit_breaker_failure_ratio must be within [0, 1]")
        return v

    @field_validator("retry_jitter")
    @classmethod
    def _validate_jitter(cls, v: float) -> float:
        if not 0.0 <= v <= 1 / 3:
            raise ValueError("retry_jitter must be within [0, 0.333]")
        return v

    @model_validator(mode="after")
    def _unique_provider_names(self) -> Settings:
        seen: set[str] = set()
        for provider in self.providers:
            if provider.name in seen:
                raise ValueError(f"duplicate provider name {provider.name!r}")
            seen.add(provider.name)
        return self


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)
