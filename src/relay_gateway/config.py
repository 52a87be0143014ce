"""Configuration utilities for the relay gateway."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

# Load secrets from home directory first, then fall back to local lookups.
load_dotenv(Path.home() / ".env", override=False)
load_dotenv(override=False)

ENV_PREFIX = "RELAY_"

LLAMAEDGE = "llamaedge"
OPENAI = "openai"


class ConfigError(ValueError):
    """Raised when configuration values are invalid or missing."""


@dataclass(frozen=True)
class ModelProfile:
    """Known limits and features of a model served by LlamaEdge."""

    max_tokens: int
    supports_tool_calls: bool = True
    supports_json_mode: bool = True
    supports_streaming: bool = True


MODEL_PROFILES: Dict[str, ModelProfile] = {
    "llama-2-7b-chat": ModelProfile(max_tokens=4096),
    "llama-2-13b-chat": ModelProfile(max_tokens=4096),
    "mistral-7b-instruct": ModelProfile(max_tokens=8192),
    "codellama-7b-instruct": ModelProfile(max_tokens=4096, supports_streaming=False),
}
DEFAULT_MODEL_PROFILE = "llama-2-7b-chat"


def model_profile(model: Optional[str]) -> ModelProfile:
    """Return the profile for ``model``, defaulting to the llama-2 chat profile."""
    return MODEL_PROFILES.get(model or "", MODEL_PROFILES[DEFAULT_MODEL_PROFILE])


@dataclass(frozen=True)
class ProviderCapabilities:
    supports_tool_calls: bool = True
    supports_json_mode: bool = True
    supports_streaming: bool = True

    def as_dict(self) -> Dict[str, bool]:
        return {
            "supportsToolCalls": self.supports_tool_calls,
            "supportsJsonMode": self.supports_json_mode,
            "supportsStreaming": self.supports_streaming,
        }


@dataclass(frozen=True)
class ProviderConfig:
    """Static description of one completion backend."""

    name: str
    base_url: Optional[str]
    model: str
    chat_timeout: float = 120.0
    embedding_timeout: float = 30.0
    health_timeout: float = 5.0
    capabilities: ProviderCapabilities = field(default_factory=ProviderCapabilities)
    api_key: Optional[str] = None
    temperature: float = 0.7
    max_output_tokens: Optional[int] = None
    context_size: Optional[int] = None
    batch_size: Optional[int] = None

    def describe(self) -> Dict[str, Any]:
        """Public view of the configuration, without credentials."""
        return {
            "name": self.name,
            "baseUrl": self.base_url,
            "model": self.model,
            "temperature": self.temperature,
            "contextSize": self.context_size,
            "batchSize": self.batch_size,
            "timeouts": {
                "chat": self.chat_timeout,
                "embedding": self.embedding_timeout,
                "health": self.health_timeout,
            },
            "capabilities": self.capabilities.as_dict(),
        }


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_factor: float = 2.0


@dataclass(frozen=True)
class StreamSettings:
    chunk_size: int = 20
    chunk_delay: float = 0.05
    heartbeat_interval: float = 15.0
    idle_timeout: float = 300.0
    sweep_interval: float = 60.0


def _fallback_flag(value: Optional[str]) -> bool:
    # Fallback stays on unless explicitly disabled.
    if value is None or value.strip() == "":
        return True
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _blank(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


@dataclass(frozen=True)
class GatewayConfig:
    """Runtime configuration for the relay gateway."""

    primary_provider: str
    fallback_enabled: bool
    providers: Tuple[ProviderConfig, ...]
    retry: RetrySettings
    stream: StreamSettings
    max_output_tokens: int
    redis_url: Optional[str]
    session_prefix: str
    session_ttl: Optional[int]
    metrics_backend: str
    metrics_port: Optional[int]
    log_level: str

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "GatewayConfig":
        """Build configuration from environment variables."""
        env = env if env is not None else os.environ

        def get(name: str, default: Optional[str] = None) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            if value is None or value.strip() == "":
                return default
            return value.strip()

        primary_provider = (get("AI_PROVIDER", LLAMAEDGE) or LLAMAEDGE).lower()
        fallback_enabled = _fallback_flag(get("AI_FALLBACK_ENABLED"))

        try:
            chat_timeout = float(get("CHAT_TIMEOUT", "120"))
            embedding_timeout = float(get("EMBEDDING_TIMEOUT", "30"))
            health_timeout = float(get("HEALTH_TIMEOUT", "5"))
            retry = RetrySettings(
                max_attempts=int(get("RETRY_MAX_ATTEMPTS", "3")),
                base_delay=float(get("RETRY_DELAY", "1.0")),
                backoff_factor=float(get("RETRY_BACKOFF_FACTOR", "2")),
            )
            stream = StreamSettings(
                chunk_size=int(get("STREAM_CHUNK_SIZE", "20")),
                chunk_delay=float(get("STREAM_CHUNK_DELAY", "0.05")),
                heartbeat_interval=float(get("STREAM_HEARTBEAT_INTERVAL", "15")),
                idle_timeout=float(get("STREAM_IDLE_TIMEOUT", "300")),
                sweep_interval=float(get("STREAM_SWEEP_INTERVAL", "60")),
            )
            max_output_tokens = int(get("MAX_OUTPUT_TOKENS", "512"))
            llama_context = int(get("LLAMAEDGE_CONTEXT_SIZE", "4096"))
            llama_batch = int(get("LLAMAEDGE_BATCH_SIZE", "512"))
            llama_temperature = float(get("LLAMAEDGE_TEMPERATURE", "0.7"))
            openai_temperature = float(get("OPENAI_TEMPERATURE", "0.7"))
            session_ttl_raw = get("SESSION_TTL")
            session_ttl = int(session_ttl_raw) if session_ttl_raw else None
            metrics_port_raw = get("METRICS_PORT")
            metrics_port = int(metrics_port_raw) if metrics_port_raw else None
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric configuration: {exc}") from exc

        metrics_backend = (get("METRICS_BACKEND", "logging") or "logging").lower()
        log_level = (get("LOG_LEVEL", "INFO") or "INFO").upper()

        if min(chat_timeout, embedding_timeout, health_timeout) <= 0:
            raise ConfigError("RELAY_*_TIMEOUT values must be > 0")
        if retry.max_attempts < 1:
            raise ConfigError("RELAY_RETRY_MAX_ATTEMPTS must be >= 1")
        if retry.base_delay < 0:
            raise ConfigError("RELAY_RETRY_DELAY must be >= 0")
        if retry.backoff_factor < 1:
            raise ConfigError("RELAY_RETRY_BACKOFF_FACTOR must be >= 1")
        if stream.chunk_size < 1:
            raise ConfigError("RELAY_STREAM_CHUNK_SIZE must be >= 1")
        if stream.chunk_delay < 0:
            raise ConfigError("RELAY_STREAM_CHUNK_DELAY must be >= 0")
        if stream.heartbeat_interval <= 0:
            raise ConfigError("RELAY_STREAM_HEARTBEAT_INTERVAL must be > 0")
        if stream.idle_timeout <= 0 or stream.sweep_interval <= 0:
            raise ConfigError("RELAY_STREAM_IDLE_TIMEOUT and RELAY_STREAM_SWEEP_INTERVAL must be > 0")
        if max_output_tokens < 1:
            raise ConfigError("RELAY_MAX_OUTPUT_TOKENS must be >= 1")
        if llama_context < 512:
            raise ConfigError("RELAY_LLAMAEDGE_CONTEXT_SIZE must be at least 512")
        if session_ttl is not None and session_ttl < 0:
            raise ConfigError("RELAY_SESSION_TTL must be >= 0 when provided")
        if metrics_backend not in {"logging", "prometheus"}:
            raise ConfigError("RELAY_METRICS_BACKEND must be 'logging' or 'prometheus'")
        if metrics_port is not None and metrics_port < 0:
            raise ConfigError("RELAY_METRICS_PORT must be >= 0 when provided")

        providers = []
        llama_url = get("LLAMAEDGE_API_URL")
        if not _blank(llama_url):
            llama_model = get("LLAMAEDGE_MODEL_NAME", DEFAULT_MODEL_PROFILE)
            profile = model_profile(llama_model)
            providers.append(
                ProviderConfig(
                    name=LLAMAEDGE,
                    base_url=llama_url.rstrip("/"),
                    model=llama_model,
                    chat_timeout=chat_timeout,
                    embedding_timeout=embedding_timeout,
                    health_timeout=health_timeout,
                    capabilities=ProviderCapabilities(
                        supports_tool_calls=profile.supports_tool_calls,
                        supports_json_mode=profile.supports_json_mode,
                        supports_streaming=profile.supports_streaming,
                    ),
                    temperature=llama_temperature,
                    max_output_tokens=profile.max_tokens,
                    context_size=llama_context,
                    batch_size=llama_batch,
                )
            )

        openai_key = get("OPENAI_API_KEY")
        if not _blank(openai_key):
            providers.append(
                ProviderConfig(
                    name=OPENAI,
                    base_url=get("OPENAI_BASE_URL"),
                    model=get("OPENAI_MODEL_NAME", "gpt-4o-mini"),
                    chat_timeout=chat_timeout,
                    embedding_timeout=embedding_timeout,
                    health_timeout=health_timeout,
                    api_key=openai_key,
                    temperature=openai_temperature,
                )
            )

        return cls(
            primary_provider=primary_provider,
            fallback_enabled=fallback_enabled,
            providers=tuple(providers),
            retry=retry,
            stream=stream,
            max_output_tokens=max_output_tokens,
            redis_url=get("REDIS_URL"),
            session_prefix=get("SESSION_PREFIX", "relay:session") or "relay:session",
            session_ttl=session_ttl,
            metrics_backend=metrics_backend,
            metrics_port=metrics_port,
            log_level=log_level,
        )

    def provider(self, name: str) -> Optional[ProviderConfig]:
        for item in self.providers:
            if item.name == name:
                return item
        return None
