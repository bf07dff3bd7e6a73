"""Exception hierarchy for the orchestration core.

Configuration and contract violations inherit from ``SwitchboardError`` and
are raised immediately.  Provider implementations signal call failures with
the ``ProviderError`` family; the orchestrator turns those into returned
outcomes and never lets them reach the caller.
"""

from __future__ import annotations


class SwitchboardError(Exception):
    """Base class for all switchboard errors."""

    def __init__(self, message: str, *, code: str = "SWITCHBOARD_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Configuration / contract ─────────────────────────────────
class ConfigurationError(SwitchboardError):
    """Startup configuration is invalid or inconsistent."""

    def __init__(self, message: str, *, code: str = "CONFIGURATION_ERROR") -> None:
        super().__init__(message, code=code)


class DuplicateProviderError(ConfigurationError):
    def __init__(self, name: str) -> None:
        super().__init__(
            f"Provider {name!r} is already registered",
            code="DUPLICATE_PROVIDER",
        )
        self.name = name


class UnknownCapabilityError(ConfigurationError):
    def __init__(self, capability: str) -> None:
        super().__init__(
            f"No provider has ever been registered for capability {capability!r}",
            code="UNKNOWN_CAPABILITY",
        )
        self.capability = capability


class UnknownProviderError(SwitchboardError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Provider {name!r} is not registered", code="UNKNOWN_PROVIDER")
        self.name = name


# ── Provider call failures ───────────────────────────────────
class ProviderError(SwitchboardError):
    """Raised by provider implementations to describe a failed call.

    ``accepted`` tells the orchestrator whether the provider may already have
    applied the call's effect.  Non-idempotent operations only fall back to
    another provider after failures with ``accepted=False``.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        accepted: bool = False,
        code: str = "PROVIDER_ERROR",
    ) -> None:
        super().__init__(message, code=code)
        self.accepted = accepted


class ProviderTimeoutError(ProviderError):
    retryable = True

    def __init__(self, message: str = "Provider timed out", *, accepted: bool = True) -> None:
        super().__init__(message, accepted=accepted, code="PROVIDER_TIMEOUT")


class ProviderTransientError(ProviderError):
    """Network failure or 5xx-equivalent; safe to retry."""

    retryable = True

    def __init__(self, message: str, *, accepted: bool = False) -> None:
        super().__init__(message, accepted=accepted, code="PROVIDER_TRANSIENT")


class ProviderPermanentError(ProviderError):
    """Malformed request or other client-side error; never retried."""

    def __init__(self, message: str, *, accepted: bool = False) -> None:
        super().__init__(message, accepted=accepted, code="PROVIDER_PERMANENT")


class ProviderRateLimitedError(ProviderError):
    """The provider itself rejected the call for exceeding its quota."""

    def __init__(self, message: str = "Provider rate limit exceeded") -> None:
        super().__init__(message, accepted=False, code="PROVIDER_RATE_LIMITED")
