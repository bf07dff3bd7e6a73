"""Switchboard — resilient multi-provider orchestration.

Routes capability-tagged operations across interchangeable providers with
circuit breaking, token-bucket rate limiting, retry with backoff,
deterministic fallback, and background health probing.
"""

from switchboard.config import ProviderSettings, Settings, get_settings
from switchboard.exceptions import (
    ConfigurationError,
    DuplicateProviderError,
    ProviderError,
    ProviderPermanentError,
    ProviderRateLimitedError,
    ProviderTimeoutError,
    ProviderTransientError,
    SwitchboardError,
    UnknownCapabilityError,
    UnknownProviderError,
)
from switchboard.providers import (
    CallableProvider,
    HealthMonitor,
    OperationResult,
    Orchestrator,
    ProviderConfig,
    ProviderDescriptor,
    ProviderPort,
    ProviderRegistry,
    ResultStatus,
)

__version__ = "0.1.0"

__all__ = [
    "CallableProvider",
    "ConfigurationError",
    "DuplicateProviderError",
    "HealthMonitor",
    "OperationResult",
    "Orchestrator",
    "ProviderConfig",
    "ProviderDescriptor",
    "ProviderError",
    "ProviderPermanentError",
    "ProviderPort",
    "ProviderRateLimitedError",
    "ProviderRegistry",
    "ProviderSettings",
    "ProviderTimeoutError",
    "ProviderTransientError",
    "ResultStatus",
    "Settings",
    "SwitchboardError",
    "UnknownCapabilityError",
    "UnknownProviderError",
    "get_settings",
]
