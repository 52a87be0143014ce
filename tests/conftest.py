"""Shared test fixtures for the relay gateway."""

import sys
from pathlib import Path

import pytest

# Ensure the source directory is importable without installing the package.
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from relay_gateway.config import (  # noqa: E402
    GatewayConfig,
    ProviderConfig,
    RetrySettings,
    StreamSettings,
)
from relay_gateway.providers.base import (  # noqa: E402
    Choice,
    CompletionResponse,
    HealthStatus,
    Message,
    Usage,
)


def provider_config(name, **overrides):
    base = dict(name=name, base_url=f"http://{name}.local", model=f"{name}-model")
    base.update(overrides)
    return ProviderConfig(**base)


def completion(content, *, tool_calls=None, model="stub-model"):
    return CompletionResponse(
        id="resp-1",
        created_at=1700000000,
        model=model,
        choices=[Choice(index=0, message=Message(role="assistant", content=content, tool_calls=tool_calls))],
        usage=Usage(prompt_tokens=3, completion_tokens=4, total_tokens=7),
    )


class FakeProvider:
    """Adapter stub replaying a script of results or exceptions."""

    def __init__(self, config, script=None, *, healthy=True):
        self.name = config.name
        self.config = config
        self._script = list(script or [])
        self.healthy = healthy
        self.requests = []
        self.closed = False

    async def complete(self, request):
        self.requests.append(request)
        outcome = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def health_check(self):
        return HealthStatus(healthy=self.healthy, detail=None if self.healthy else "down")

    async def list_models(self):
        return [{"id": self.config.model}]

    async def embed(self, texts):
        return [[0.0] for _ in texts]

    async def aclose(self):
        self.closed = True

    @property
    def calls(self):
        return len(self.requests)


def fake_factory(scripts, *, unhealthy=()):
    """Registry factory producing FakeProviders keyed by provider name."""
    created = {}

    def _factory(config):
        provider = FakeProvider(config, scripts[config.name], healthy=config.name not in unhealthy)
        created[config.name] = provider
        return provider

    _factory.created = created
    return _factory


def gateway_config(**overrides):
    base = dict(
        primary_provider="alpha",
        fallback_enabled=True,
        providers=(provider_config("alpha"), provider_config("beta")),
        retry=RetrySettings(max_attempts=2, base_delay=0.0, backoff_factor=2.0),
        stream=StreamSettings(chunk_size=5, chunk_delay=0.0, heartbeat_interval=60.0),
        max_output_tokens=256,
        redis_url=None,
        session_prefix="relay:test",
        session_ttl=None,
        metrics_backend="logging",
        metrics_port=None,
        log_level="INFO",
    )
    base.update(overrides)
    return GatewayConfig(**base)


class RecorderMetrics:
    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)


class RecordingTransport:
    """Collects SSE frames written by the stream responder."""

    def __init__(self, *, on_send=None):
        self.frames = []
        self.closed = False
        self._on_send = on_send

    async def send(self, frame):
        self.frames.append(frame)
        if self._on_send is not None:
            await self._on_send(frame)

    async def close(self):
        self.closed = True

    def events(self):
        import json

        parsed = []
        for frame in self.frames:
            if frame.startswith(":"):
                continue
            lines = frame.strip().split("\n")
            name = lines[0][len("event: "):]
            data = json.loads(lines[1][len("data: "):])
            parsed.append((name, data))
        return parsed


@pytest.fixture
def recorder_metrics():
    return RecorderMetrics()
