"""Provider adapter exports."""

from .base import (
    BaseProvider,
    Choice,
    CompletionRequest,
    CompletionResponse,
    ConnectionFailed,
    ErrorKind,
    HealthStatus,
    InvalidRequest,
    Message,
    ModelNotFound,
    ProviderError,
    ProviderTimeout,
    RateLimited,
    ServerError,
    Usage,
)
from .llamaedge import LlamaEdgeProvider
from .openai import OpenAIChatProvider

__all__ = [
    "BaseProvider",
    "Choice",
    "CompletionRequest",
    "CompletionResponse",
    "ConnectionFailed",
    "ErrorKind",
    "HealthStatus",
    "InvalidRequest",
    "LlamaEdgeProvider",
    "Message",
    "ModelNotFound",
    "OpenAIChatProvider",
    "ProviderError",
    "ProviderTimeout",
    "RateLimited",
    "ServerError",
    "Usage",
]
