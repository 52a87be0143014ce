"""Package-level tests for the public API surface."""

import relay_gateway
from relay_gateway.gateway import ChatGateway


def test_version_matches_packaging():
    assert relay_gateway.__version__ == "0.1.0"


def test_public_exports_resolve():
    """Every name advertised in ``__all__`` is importable from the package."""
    missing = [name for name in relay_gateway.__all__ if not hasattr(relay_gateway, name)]
    assert missing == []
    assert relay_gateway.ChatGateway is ChatGateway
