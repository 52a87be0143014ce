"""Relay Gateway - multi-provider chat completion gateway with failover and SSE streaming."""

from .config import ConfigError, GatewayConfig  # noqa: F401
from .errors import (  # noqa: F401
    AllProvidersFailed,
    NoProvidersConfigured,
    ProviderUnavailable,
    ProviderUnhealthy,
    SessionNotFound,
)
from .failover import FailoverSequencer  # noqa: F401
from .gateway import ChatGateway  # noqa: F401
from .pipeline import ConversationPipeline  # noqa: F401
from .registry import ProviderRegistry  # noqa: F401
from .retry import RetryPolicy, with_retry  # noqa: F401
from .streaming import StreamResponder  # noqa: F401

__all__ = [
    "AllProvidersFailed",
    "ChatGateway",
    "ConfigError",
    "ConversationPipeline",
    "FailoverSequencer",
    "GatewayConfig",
    "NoProvidersConfigured",
    "ProviderRegistry",
    "ProviderUnavailable",
    "ProviderUnhealthy",
    "RetryPolicy",
    "SessionNotFound",
    "StreamResponder",
    "with_retry",
    "__version__",
]

__version__ = "0.1.0"
