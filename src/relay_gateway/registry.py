"""Provider registry: configured adapters and the active provider."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config import LLAMAEDGE, OPENAI, ConfigError, GatewayConfig, ProviderConfig
from .errors import NoProvidersConfigured, ProviderUnavailable, ProviderUnhealthy
from .providers.base import BaseProvider, HealthStatus, ProviderError
from .providers.llamaedge import LlamaEdgeProvider
from .providers.openai import OpenAIChatProvider

LOGGER = logging.getLogger("relay_gateway.registry")

ProviderFactory = Callable[[ProviderConfig], BaseProvider]


def create_provider(config: ProviderConfig) -> BaseProvider:
    """Instantiate the adapter for a provider configuration."""
    if config.name == LLAMAEDGE:
        return LlamaEdgeProvider(config)
    if config.name == OPENAI:
        return OpenAIChatProvider(config)
    raise ConfigError(f"Unsupported AI provider: {config.name}")


@dataclass
class ProviderHandle:
    """A configured provider bound to its live adapter."""

    config: ProviderConfig
    adapter: BaseProvider
    healthy: Optional[bool] = None
    last_checked: Optional[float] = None
    last_detail: Optional[str] = None

    @property
    def name(self) -> str:
        return self.config.name

    def record_health(self, status: HealthStatus) -> None:
        self.healthy = status.healthy
        self.last_detail = status.detail
        self.last_checked = time.time()


class ProviderRegistry:
    """Own the configured providers and the primary/active selection."""

    def __init__(
        self,
        providers: Iterable[ProviderConfig],
        *,
        primary: str,
        fallback_enabled: bool = True,
        factory: Optional[ProviderFactory] = None,
    ) -> None:
        factory = factory or create_provider
        self._handles: Dict[str, ProviderHandle] = {}
        for config in providers:
            if config.name in self._handles:
                raise ConfigError(f"Duplicate provider name: {config.name}")
            self._handles[config.name] = ProviderHandle(config=config, adapter=factory(config))
            LOGGER.info("%s provider initialized", config.name)

        if not self._handles:
            raise NoProvidersConfigured()

        self.primary = primary
        self.fallback_enabled = fallback_enabled
        if primary in self._handles:
            self._active = primary
        else:
            self._active = next(iter(self._handles))
            LOGGER.warning("Primary provider '%s' not available, using '%s'", primary, self._active)
        LOGGER.info("Active AI provider: %s", self._active)

    @classmethod
    def from_config(cls, config: GatewayConfig, *, factory: Optional[ProviderFactory] = None) -> "ProviderRegistry":
        return cls(
            config.providers,
            primary=config.primary_provider,
            fallback_enabled=config.fallback_enabled,
            factory=factory,
        )

    @property
    def active(self) -> str:
        return self._active

    @property
    def active_handle(self) -> ProviderHandle:
        return self._handles[self._active]

    def names(self) -> List[str]:
        return list(self._handles)

    def get(self, name: str) -> ProviderHandle:
        try:
            return self._handles[name]
        except KeyError:
            raise ProviderUnavailable(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def candidate_order(self) -> List[str]:
        """Active provider first, then the rest in configuration order."""
        order = [self._active]
        order.extend(name for name in self._handles if name != self._active)
        return order

    def promote(self, name: str) -> None:
        """Make ``name`` the active provider without a health probe."""
        if name not in self._handles:
            raise ProviderUnavailable(name)
        if name != self._active:
            LOGGER.info("Promoting AI provider from '%s' to '%s'", self._active, name)
            self._active = name

    async def health_check(self, name: Optional[str] = None) -> HealthStatus:
        """Probe one provider (the active one by default) and remember the result."""
        handle = self.get(name or self._active)
        try:
            status = await handle.adapter.health_check()
        except ProviderError as exc:
            status = HealthStatus(healthy=False, detail=exc.message)
        except Exception as exc:
            LOGGER.exception("Health check for %s raised unexpectedly", handle.name)
            status = HealthStatus(healthy=False, detail=str(exc))
        handle.record_health(status)
        if not status.healthy:
            LOGGER.error("Health check failed for %s: %s", handle.name, status.detail)
        return status

    async def health_report(self) -> Dict[str, HealthStatus]:
        report: Dict[str, HealthStatus] = {}
        for name in self._handles:
            report[name] = await self.health_check(name)
        return report

    async def switch_provider(self, name: str) -> str:
        """Switch the active provider after confirming it is healthy.

        The active selection only changes once the probe has completed, so
        concurrent requests never observe a half-finished switch.
        """
        if name not in self._handles:
            raise ProviderUnavailable(name)
        previous = self._active
        if name == previous:
            return previous
        status = await self.health_check(name)
        if not status.healthy:
            raise ProviderUnhealthy(name, previous, status.detail)
        self._active = name
        LOGGER.info("Switched AI provider from '%s' to '%s'", previous, name)
        return previous

    def providers_info(self) -> Dict[str, Any]:
        return {
            "activeProvider": self._active,
            "primaryProvider": self.primary,
            "fallbackEnabled": self.fallback_enabled,
            "providers": {
                name: {
                    **handle.config.describe(),
                    "healthy": handle.healthy,
                    "lastChecked": handle.last_checked,
                    "active": name == self._active,
                }
                for name, handle in self._handles.items()
            },
        }

    async def server_info(self, name: Optional[str] = None) -> Dict[str, Any]:
        """Health, catalog and configuration for one provider."""
        handle = self.get(name or self._active)
        status = await self.health_check(handle.name)
        try:
            models = await handle.adapter.list_models()
        except ProviderError as exc:
            LOGGER.warning("Could not list models for %s: %s", handle.name, exc.message)
            models = []
        return {
            "server": handle.name,
            "healthy": status.healthy,
            "detail": status.detail,
            "models": models,
            "config": handle.config.describe(),
        }

    async def aclose(self) -> None:
        for handle in self._handles.values():
            try:
                await handle.adapter.aclose()
            except Exception:  # pragma: no cover - provider cleanup best-effort
                LOGGER.debug("Provider cleanup failed for %s", handle.name, exc_info=True)
