"""LlamaEdge provider adapter.

LlamaEdge exposes an OpenAI-compatible HTTP API (``/v1/chat/completions``,
``/v1/models``, ``/v1/embeddings``) but is looser about the response body;
every completion is passed through :func:`normalize_completion`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

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

LOGGER = logging.getLogger("relay_gateway.providers.llamaedge")

CHAT_COMPLETIONS = "/v1/chat/completions"
MODELS = "/v1/models"
EMBEDDINGS = "/v1/embeddings"


class LlamaEdgeProvider(BaseProvider):
    """Adapter for a LlamaEdge (or any OpenAI-compatible) server."""

    def __init__(self, config: ProviderConfig, *, client: Optional[httpx.AsyncClient] = None):
        if not config.base_url:
            raise ValueError("LlamaEdgeProvider requires a base_url")
        self.name = config.name
        self.config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.chat_timeout,
            headers={"Content-Type": "application/json"},
        )
        LOGGER.info("LlamaEdge client initialized: %s", config.base_url)

    async def _request(self, method: str, path: str, *, timeout: float, json: Any = None) -> Any:
        LOGGER.debug("LlamaEdge request: %s %s", method, path)
        try:
            response = await self._client.request(method, path, json=json, timeout=timeout)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(f"LlamaEdge request timed out: {exc}", provider=self.name) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            LOGGER.error("LlamaEdge server error: %s %s", status, exc.response.reason_phrase)
            raise error_for_status(
                status,
                f"LlamaEdge returned {status}: {exc.response.text[:200]}",
                provider=self.name,
            ) from exc
        except httpx.TransportError as exc:
            LOGGER.error("LlamaEdge connection error: %s", exc)
            raise ConnectionFailed(f"LlamaEdge connection failed: {exc}", provider=self.name) from exc
        except httpx.HTTPError as exc:
            LOGGER.error("LlamaEdge response could not be read: %s", exc)
            raise ServerError(f"LlamaEdge returned an unreadable response: {exc}", provider=self.name) from exc

        LOGGER.debug("LlamaEdge response: %s", response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise ServerError("LlamaEdge returned a non-JSON body", provider=self.name) from exc

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        payload = wire_payload(request, self.config)
        data = await self._request("POST", CHAT_COMPLETIONS, timeout=self.config.chat_timeout, json=payload)
        if isinstance(data, dict) and not isinstance(data.get("choices"), list):
            LOGGER.warning("LlamaEdge response missing choices array, transforming")
        return normalize_completion(data, provider=self.name, default_model=payload["model"])

    async def health_check(self) -> HealthStatus:
        try:
            models = await self.list_models()
        except ProviderError as exc:
            LOGGER.error("LlamaEdge health check failed: %s", exc.message)
            return HealthStatus(healthy=False, detail=exc.message)
        return HealthStatus(healthy=True, models=[str(item.get("id")) for item in models])

    async def list_models(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", MODELS, timeout=self.config.health_timeout)
        models = data.get("data") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return []
        return [item for item in models if isinstance(item, dict)]

    async def embed(self, texts: List[str]) -> List[List[float]]:
        data = await self._request(
            "POST",
            EMBEDDINGS,
            timeout=self.config.embedding_timeout,
            json={"input": texts, "model": self.config.model},
        )
        rows = data.get("data") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            raise ServerError("LlamaEdge embeddings response missing data array", provider=self.name)
        return [list(row.get("embedding") or []) for row in rows if isinstance(row, dict)]

    async def aclose(self) -> None:
        await self._client.aclose()
