"""Cross-provider failover for completion requests."""

from __future__ import annotations

import logging
from time import perf_counter
from typing import List, Optional

from .errors import AllProvidersFailed
from .metrics import CompletionMetricsEvent, LoggingMetricsCollector, MetricsCollector
from .providers.base import (
    CompletionRequest,
    CompletionResponse,
    ErrorKind,
    ProviderError,
    ServerError,
)
from .registry import ProviderHandle, ProviderRegistry
from .retry import RetryPolicy

LOGGER = logging.getLogger("relay_gateway.failover")


class FailoverSequencer:
    """Produce one completion from the first provider that can serve it.

    Candidates are tried active-first. Each candidate gets its own retry
    budget from the :class:`RetryPolicy`; the number of candidates tried is
    the fallback budget (all of them when fallback is enabled, otherwise
    only the active one). A provider that succeeds after the active one
    failed becomes the new active provider.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        retry_policy: Optional[RetryPolicy] = None,
        *,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._registry = registry
        self._retry = retry_policy or RetryPolicy()
        self._metrics = metrics or LoggingMetricsCollector()

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def create_completion(
        self,
        request: CompletionRequest,
        fallback_enabled: Optional[bool] = None,
    ) -> CompletionResponse:
        if fallback_enabled is None:
            fallback_enabled = self._registry.fallback_enabled

        start = perf_counter()
        order = self._registry.candidate_order()
        max_attempts = len(order) if fallback_enabled else 1
        last_error: Optional[ProviderError] = None
        tried: List[str] = []

        for name in order:
            if len(tried) >= max_attempts:
                break
            handle = self._registry.get(name)
            tried.append(name)
            LOGGER.debug("Attempting chat completion with %s (attempt %s/%s)", name, len(tried), max_attempts)
            try:
                response = await self._retry.run(
                    lambda: self._invoke(handle, request),
                    label=f"{name} completion",
                )
            except ProviderError as exc:
                if exc.kind is ErrorKind.INVALID_REQUEST:
                    # The request itself is malformed; another provider will not help.
                    self._record("error", name, start, len(tried), exc)
                    raise
                last_error = exc
                LOGGER.warning("Chat completion failed with %s: %s (%s)", name, exc.message, exc.kind.value)
                continue

            response.provider = name
            response.attempt = len(tried)
            if name != self._registry.active:
                self._registry.promote(name)
            self._record("success", name, start, len(tried), None)
            return response

        self._record("error", None, start, len(tried), last_error)
        raise AllProvidersFailed(last_error, tried) from last_error

    async def _invoke(self, handle: ProviderHandle, request: CompletionRequest) -> CompletionResponse:
        try:
            response = await handle.adapter.complete(request)
        except ProviderError as exc:
            if exc.provider is None:
                exc.provider = handle.name
            raise
        except Exception as exc:
            LOGGER.exception("Unexpected provider exception from %s", handle.name)
            raise ServerError(
                "Unexpected provider error",
                provider=handle.name,
                details={"exception_type": type(exc).__name__},
            ) from exc
        if not response.choices:
            raise ServerError("Provider returned no choices", provider=handle.name)
        return response

    def _record(
        self,
        status: str,
        provider: Optional[str],
        start: float,
        attempts: int,
        error: Optional[ProviderError],
    ) -> None:
        self._metrics.record(
            CompletionMetricsEvent(
                status=status,
                provider=provider,
                duration_ms=(perf_counter() - start) * 1000,
                attempts=attempts,
                fallback=attempts > 1,
                error_kind=error.kind.value if error is not None else None,
            )
        )
