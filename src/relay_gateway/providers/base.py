"""Provider abstractions for completion backends."""

from __future__ import annotations

import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from ..config import ProviderConfig

LOGGER = logging.getLogger("relay_gateway.providers")

ROLES = ("system", "user", "assistant", "tool")


class ErrorKind(str, enum.Enum):
    CONNECTION_FAILED = "CONNECTION_FAILED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    TIMEOUT = "TIMEOUT"


TERMINAL_KINDS = frozenset({ErrorKind.INVALID_REQUEST, ErrorKind.MODEL_NOT_FOUND})


class ProviderError(Exception):
    """Standard error raised by provider adapters."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = ErrorKind(kind)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.kind not in TERMINAL_KINDS

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, provider={self.provider!r}, message={self.message!r})"


class _KindedError(ProviderError):
    KIND: ErrorKind

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(self.KIND, message, **kwargs)


class ConnectionFailed(_KindedError):
    KIND = ErrorKind.CONNECTION_FAILED


class ModelNotFound(_KindedError):
    KIND = ErrorKind.MODEL_NOT_FOUND


class InvalidRequest(_KindedError):
    KIND = ErrorKind.INVALID_REQUEST


class RateLimited(_KindedError):
    KIND = ErrorKind.RATE_LIMITED


class ServerError(_KindedError):
    KIND = ErrorKind.SERVER_ERROR


class ProviderTimeout(_KindedError):
    KIND = ErrorKind.TIMEOUT


def error_for_status(status: int, message: str, **kwargs: Any) -> ProviderError:
    """Map an HTTP status returned by a backend onto the error taxonomy."""
    if status == 400:
        return InvalidRequest(message, status_code=status, **kwargs)
    if status == 404:
        return ModelNotFound(message, status_code=status, **kwargs)
    if status == 429:
        return RateLimited(message, status_code=status, **kwargs)
    return ServerError(message, status_code=status, **kwargs)


@dataclass
class Message:
    role: str
    content: str
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unsupported message role: {self.role}")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = self.tool_calls
        if self.tool_call_id:
            payload["tool_call_id"] = self.tool_call_id
        if self.name:
            payload["name"] = self.name
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        return cls(
            role=str(data.get("role", "user")),
            content=str(data.get("content") or ""),
            tool_calls=data.get("tool_calls") or data.get("toolCalls") or None,
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


@dataclass
class CompletionRequest:
    """Normalized completion request passed to provider adapters."""

    messages: List[Message]
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    tools: Optional[List[Dict[str, Any]]] = None
    tool_choice: Optional[Any] = None
    response_format: Optional[Dict[str, Any]] = None
    stream: bool = False
    model: Optional[str] = None

    def wire_messages(self) -> List[Dict[str, Any]]:
        return [message.to_dict() for message in self.messages]


@dataclass
class Choice:
    index: int
    message: Message
    finish_reason: str = "stop"


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResponse:
    """Canonical completion shape, identical for every provider."""

    id: str
    created_at: int
    model: str
    choices: List[Choice]
    usage: Usage = field(default_factory=Usage)
    provider: Optional[str] = None
    attempt: Optional[int] = None

    @property
    def message(self) -> Message:
        return self.choices[0].message

    @property
    def content(self) -> str:
        return self.message.content

    def to_dict(self) -> Dict[str, Any]:
        choices = []
        for choice in self.choices:
            message: Dict[str, Any] = {"role": choice.message.role, "content": choice.message.content}
            if choice.message.tool_calls:
                message["toolCalls"] = choice.message.tool_calls
            choices.append({"index": choice.index, "message": message, "finishReason": choice.finish_reason})
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "model": self.model,
            "choices": choices,
            "usage": {
                "promptTokens": self.usage.prompt_tokens,
                "completionTokens": self.usage.completion_tokens,
                "totalTokens": self.usage.total_tokens,
            },
            "provider": self.provider,
            "attempt": self.attempt,
        }


@dataclass
class HealthStatus:
    healthy: bool
    detail: Optional[str] = None
    models: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"healthy": self.healthy}
        if self.detail:
            payload["detail"] = self.detail
        if self.models:
            payload["models"] = list(self.models)
        return payload


def wire_payload(request: CompletionRequest, config: ProviderConfig) -> Dict[str, Any]:
    """Translate a request into an OpenAI-compatible chat completion body.

    Tool descriptors and structured-output constraints are only forwarded
    when the provider advertises support for them.
    """
    payload: Dict[str, Any] = {
        "model": request.model or config.model,
        "messages": request.wire_messages(),
        "temperature": config.temperature if request.temperature is None else request.temperature,
        "stream": False,
    }
    max_tokens = request.max_output_tokens or config.max_output_tokens
    if max_tokens:
        payload["max_tokens"] = max_tokens

    capabilities = config.capabilities
    if request.tools:
        if capabilities.supports_tool_calls:
            payload["tools"] = request.tools
            if request.tool_choice is not None:
                payload["tool_choice"] = request.tool_choice
        else:
            LOGGER.debug("Dropping %s tool descriptors for provider %s", len(request.tools), config.name)
    if request.response_format:
        if capabilities.supports_json_mode:
            payload["response_format"] = request.response_format
        else:
            LOGGER.debug("Dropping response_format for provider %s", config.name)
    return payload


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def normalize_completion(
    payload: Mapping[str, Any],
    *,
    provider: str,
    default_model: str,
) -> CompletionResponse:
    """Coerce an OpenAI-like completion body into :class:`CompletionResponse`.

    Backends occasionally omit the ``choices`` array and return a flat
    ``content``/``text`` field instead, or leave out message roles and finish
    reasons. Those shapes are folded into a single assistant choice.
    """
    if not isinstance(payload, Mapping):
        raise ServerError(
            f"Unexpected completion payload type: {type(payload).__name__}",
            provider=provider,
        )

    raw_choices = payload.get("choices")
    choices: List[Choice] = []
    if isinstance(raw_choices, Sequence) and not isinstance(raw_choices, (str, bytes)):
        for position, raw in enumerate(raw_choices):
            if not isinstance(raw, Mapping):
                continue
            raw_message = raw.get("message") if isinstance(raw.get("message"), Mapping) else {}
            content = raw_message.get("content")
            if content is None:
                content = raw.get("text")
            role = raw_message.get("role")
            message = Message(
                role=role if role in ROLES else "assistant",
                content=str(content or ""),
                tool_calls=raw_message.get("tool_calls") or None,
            )
            index = raw.get("index")
            choices.append(
                Choice(
                    index=index if isinstance(index, int) else position,
                    message=message,
                    finish_reason=str(raw.get("finish_reason") or "stop"),
                )
            )

    if not choices:
        flat = payload.get("content")
        if flat is None:
            flat = payload.get("text")
        choices = [Choice(index=0, message=Message(role="assistant", content=str(flat or "")))]

    raw_usage = payload.get("usage") if isinstance(payload.get("usage"), Mapping) else {}
    usage = Usage(
        prompt_tokens=_as_int(raw_usage.get("prompt_tokens")),
        completion_tokens=_as_int(raw_usage.get("completion_tokens")),
        total_tokens=_as_int(raw_usage.get("total_tokens")),
    )
    if not usage.total_tokens:
        usage.total_tokens = usage.prompt_tokens + usage.completion_tokens

    created = payload.get("created")
    return CompletionResponse(
        id=str(payload.get("id") or f"chatcmpl-{uuid.uuid4().hex}"),
        created_at=created if isinstance(created, int) else int(time.time()),
        model=str(payload.get("model") or default_model),
        choices=choices,
        usage=usage,
        provider=provider,
    )


class BaseProvider(Protocol):
    """Protocol describing provider behaviour."""

    name: str
    config: ProviderConfig

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Produce a completion for the given request."""

    async def health_check(self) -> HealthStatus:
        """Probe the backend; never raises."""

    async def list_models(self) -> List[Dict[str, Any]]:
        """Return the backend's model catalog."""

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Return one embedding vector per input text."""

    async def aclose(self) -> None:  # pragma: no cover - optional hook
        """Optional async cleanup hook."""
