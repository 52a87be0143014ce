"""Gateway wiring: config → providers → failover → sessions → streaming."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Sequence

from .config import GatewayConfig
from .failover import FailoverSequencer
from .metrics import LoggingMetricsCollector, MetricsCollector, PrometheusMetricsCollector
from .pipeline import ConversationPipeline, ConversationReply, ToolSpec
from .providers.base import InvalidRequest
from .registry import ProviderRegistry
from .responses import session_payload
from .retry import RetryPolicy
from .sessions import InMemorySessionStore, RedisSessionStore, Session, SessionStore
from .streaming import ConnectionSweeper, StreamResponder, StreamState, StreamTransport

LOGGER = logging.getLogger("relay_gateway.gateway")


def _level_for(name: str) -> int:
    level = getattr(logging, name.upper(), logging.INFO)
    if isinstance(level, int):
        return level
    return logging.INFO


def create_store(config: GatewayConfig) -> SessionStore:
    """Redis-backed sessions when a Redis URL is configured, memory otherwise."""
    if config.redis_url:
        return RedisSessionStore(url=config.redis_url, prefix=config.session_prefix, ttl=config.session_ttl)
    LOGGER.warning("RELAY_REDIS_URL not set, sessions are kept in memory only")
    return InMemorySessionStore()


def create_metrics_collector(config: GatewayConfig) -> MetricsCollector:
    if config.metrics_backend == "prometheus":
        return PrometheusMetricsCollector(port=config.metrics_port)
    return LoggingMetricsCollector()


def _validate_text(text: str) -> str:
    if not isinstance(text, str) or text.strip() == "":
        raise InvalidRequest("Message is required and must be a non-empty string")
    return text.strip()


class ChatGateway:
    """Entry point used by the transport layer."""

    def __init__(
        self,
        *,
        config: GatewayConfig,
        registry: Optional[ProviderRegistry] = None,
        store: Optional[SessionStore] = None,
        tools: Optional[Sequence[ToolSpec]] = None,
        metrics: Optional[MetricsCollector] = None,
        retry_policy: Optional[RetryPolicy] = None,
        responder: Optional[StreamResponder] = None,
    ) -> None:
        self.config = config
        logging.getLogger("relay_gateway").setLevel(_level_for(config.log_level))

        self.registry = registry if registry is not None else ProviderRegistry.from_config(config)
        self.sequencer = FailoverSequencer(
            self.registry,
            retry_policy or RetryPolicy.from_settings(config.retry),
            metrics=metrics or create_metrics_collector(config),
        )
        self.store = store if store is not None else create_store(config)
        self.pipeline = ConversationPipeline(
            self.store,
            self.sequencer,
            tools=tools,
            max_output_tokens=config.max_output_tokens,
        )
        self.responder = responder or StreamResponder.from_settings(config.stream)
        self._sweeper = ConnectionSweeper(
            self.responder.registry,
            interval=config.stream.sweep_interval,
            max_age=config.stream.idle_timeout,
        )

    async def start(self) -> None:
        self._sweeper.start()
        LOGGER.info(
            "Gateway started with providers=%s active=%s fallback=%s",
            self.registry.names(),
            self.registry.active,
            self.registry.fallback_enabled,
        )

    async def stop(self) -> None:
        try:
            await self._sweeper.stop()
            await self.responder.registry.close_all()
        finally:
            await self.registry.aclose()
            close_store = getattr(self.store, "aclose", None)
            if close_store is not None:
                try:
                    await close_store()
                except Exception:  # pragma: no cover - store cleanup best-effort
                    LOGGER.debug("Session store cleanup failed", exc_info=True)
            LOGGER.info("Gateway stopped")

    async def __aenter__(self) -> "ChatGateway":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def create_session(self, session_type: str = "web") -> Session:
        return await self.pipeline.create_session(session_type)

    async def delete_session(self, session_id: str) -> None:
        await self.responder.registry.close(session_id)
        await self.pipeline.delete_session(session_id)

    async def session_info(self, session_id: str) -> Dict[str, Any]:
        session = await self.pipeline.get_session(session_id)
        return session_payload(session, is_active=session_id in self.responder.registry)

    async def send_message(self, session_id: str, text: str) -> ConversationReply:
        return await self.pipeline.handle_message(session_id, _validate_text(text))

    async def stream_message(self, session_id: str, text: str, transport: StreamTransport) -> StreamState:
        """Stream one exchange over ``transport``.

        Unknown sessions and empty messages fail before any event is written.
        """
        text = _validate_text(text)
        await self.pipeline.get_session(session_id)
        return await self.responder.stream(
            session_id,
            transport,
            lambda: self.pipeline.handle_message(session_id, text),
        )

    def disconnect(self, session_id: str) -> None:
        self.responder.disconnect(session_id)

    async def health(self) -> Dict[str, Any]:
        status = await self.registry.health_check()
        info = self.registry.providers_info()
        return {
            "status": "healthy" if status.healthy else "degraded",
            "services": {"ai": "healthy" if status.healthy else "unhealthy"},
            "ai": {
                "activeProvider": info["activeProvider"],
                "availableProviders": list(info["providers"]),
                "fallbackEnabled": info["fallbackEnabled"],
                "detail": status.detail,
            },
            "stats": {"activeStreams": len(self.responder.registry)},
        }


async def perform_healthcheck(
    config: GatewayConfig,
    registry_factory: Optional[Callable[[GatewayConfig], ProviderRegistry]] = None,
) -> bool:
    """Probe the active provider."""
    registry_factory = registry_factory or ProviderRegistry.from_config
    registry = registry_factory(config)
    try:
        status = await registry.health_check()
        if status.healthy:
            LOGGER.info("Healthcheck succeeded for provider %s", registry.active)
        else:
            LOGGER.warning("Healthcheck failed for provider %s: %s", registry.active, status.detail)
        return status.healthy
    finally:
        await registry.aclose()
