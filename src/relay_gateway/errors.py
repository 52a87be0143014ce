"""Gateway-level errors raised above the provider adapters."""

from __future__ import annotations

from typing import Optional, Sequence

from .providers.base import ProviderError


class GatewayError(Exception):
    """Base class for registry, sequencer and pipeline failures."""

    code = "gateway_error"


class NoProvidersConfigured(GatewayError):
    code = "no_providers_configured"

    def __init__(self, message: str = "No AI providers are configured and available"):
        super().__init__(message)


class ProviderUnavailable(GatewayError):
    code = "provider_unavailable"

    def __init__(self, name: str):
        super().__init__(f"Provider '{name}' is not available")
        self.name = name


class ProviderUnhealthy(GatewayError):
    code = "provider_unhealthy"

    def __init__(self, name: str, active: str, detail: Optional[str] = None):
        message = f"Provider '{name}' is not healthy, staying on '{active}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.name = name
        self.active = active
        self.detail = detail


class AllProvidersFailed(GatewayError):
    """Every candidate provider was tried and none produced a completion."""

    code = "all_providers_failed"

    def __init__(self, last_error: Optional[ProviderError], tried: Sequence[str]):
        detail = last_error.message if last_error is not None else "no provider attempted"
        super().__init__(f"All providers failed ({', '.join(tried) or 'none'}): {detail}")
        self.last_error = last_error
        self.tried = list(tried)


class SessionNotFound(GatewayError):
    code = "session_not_found"

    def __init__(self, session_id: str):
        super().__init__(f"Session '{session_id}' not found")
        self.session_id = session_id
