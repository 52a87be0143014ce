"""OpenAI provider adapter."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)

from ..config import ProviderConfig
from .base import (
    BaseProvider,
    CompletionRequest,
    CompletionResponse,
    ConnectionFailed,
    HealthStatus,
    ProviderError,
    ProviderTimeout,
    ServerError,
    error_for_status,
    normalize_completion,
    wire_payload,
)

LOGGER = logging.getLogger("relay_gateway.providers.openai")


def _translate_error(exc: BaseException, provider: str) -> ProviderError:
    # APITimeoutError subclasses APIConnectionError, so check it first.
    if isinstance(exc, APITimeoutError):
        return ProviderTimeout(str(exc), provider=provider)
    if isinstance(exc, APIConnectionError):
        return ConnectionFailed(str(exc), provider=provider)
    if isinstance(exc, APIStatusError):
        return error_for_status(
            exc.status_code,
            str(exc),
            provider=provider,
            details={"code": getattr(exc, "code", None)},
        )
    return ServerError(
        str(exc),
        provider=provider,
        details={"code": getattr(exc, "code", None) or "openai_error"},
    )


def _as_dict(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict):
        return payload
    if hasattr(payload, "model_dump"):
        return payload.model_dump()
    raise ServerError(f"Unexpected OpenAI payload: {type(payload).__name__}", provider="openai")


class OpenAIChatProvider(BaseProvider):
    """Adapter for the OpenAI Chat Completions API."""

    def __init__(self, config: ProviderConfig, *, client: Optional[AsyncOpenAI] = None):
        self.name = config.name
        self.config = config
        self._client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.chat_timeout,
            # Retries are owned by the gateway's retry policy.
            max_retries=0,
        )

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        payload = wire_payload(request, self.config)
        client = self._client.with_options(timeout=self.config.chat_timeout)
        try:
            response = await client.chat.completions.create(**payload)
        except APIError as exc:
            raise _translate_error(exc, self.name) from exc

        return normalize_completion(
            _as_dict(response),
            provider=self.name,
            default_model=payload["model"],
        )

    async def health_check(self) -> HealthStatus:
        try:
            models = await self.list_models()
        except ProviderError as exc:
            LOGGER.error("OpenAI health check failed: %s", exc.message)
            return HealthStatus(healthy=False, detail=exc.message)
        return HealthStatus(healthy=True, models=[str(item.get("id")) for item in models])

    async def list_models(self) -> List[Dict[str, Any]]:
        client = self._client.with_options(timeout=self.config.health_timeout)
        try:
            page = await client.models.list()
        except APIError as exc:
            raise _translate_error(exc, self.name) from exc
        return [_as_dict(item) for item in getattr(page, "data", [])]

    async def embed(self, texts: List[str]) -> List[List[float]]:
        client = self._client.with_options(timeout=self.config.embedding_timeout)
        try:
            response = await client.embeddings.create(model=self.config.model, input=texts)
        except APIError as exc:
            raise _translate_error(exc, self.name) from exc
        return [list(item.embedding) for item in response.data]

    async def aclose(self) -> None:
        await self._client.close()
