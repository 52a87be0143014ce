"""Tests for the OpenAI provider adapter."""

from types import SimpleNamespace

import httpx
import pytest

from openai import APIConnectionError, APIStatusError, APITimeoutError, RateLimitError

from conftest import provider_config

from relay_gateway.config import ProviderCapabilities
from relay_gateway.providers.base import (
    CompletionRequest,
    ConnectionFailed,
    ErrorKind,
    Message,
    ModelNotFound,
    ProviderTimeout,
    RateLimited,
)
from relay_gateway.providers.openai import OpenAIChatProvider


class _Payload:
    """Mimics a pydantic response object from the OpenAI SDK."""

    def __init__(self, data):
        self._data = data

    def model_dump(self):
        return self._data


class _FakeCompletions:
    def __init__(self, response):
        self._response = response
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self._response, BaseException):
            raise self._response
        return self._response


class _FakeModels:
    def __init__(self, models):
        self._models = models

    async def list(self):
        if isinstance(self._models, BaseException):
            raise self._models
        return SimpleNamespace(data=[_Payload(item) for item in self._models])


class _FakeClient:
    def __init__(self, response=None, models=()):
        self.chat = SimpleNamespace(completions=_FakeCompletions(response))
        self.models = _FakeModels(list(models) if not isinstance(models, BaseException) else models)
        self.closed = False
        self.timeout_options = []

    def with_options(self, **kwargs):
        self.timeout_options.append(kwargs)
        return self

    async def close(self):
        self.closed = True


def _request():
    return CompletionRequest(messages=[Message(role="user", content="Tell me something")])


def _http_request():
    return httpx.Request("POST", "https://api.openai.test/v1/chat/completions")


def _provider(client, **overrides):
    config = provider_config("openai", base_url=None, api_key="sk-test", chat_timeout=20.0, **overrides)
    return OpenAIChatProvider(config, client=client)


@pytest.mark.asyncio
async def test_openai_provider_success():
    client = _FakeClient(
        _Payload(
            {
                "id": "resp-1",
                "created": 1700000000,
                "model": "gpt-test",
                "choices": [
                    {"index": 0, "message": {"role": "assistant", "content": "result text"}, "finish_reason": "stop"}
                ],
                "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
            }
        )
    )
    provider = _provider(client)

    response = await provider.complete(_request())

    assert response.content == "result text"
    assert response.model == "gpt-test"
    assert response.id == "resp-1"
    assert response.usage.total_tokens == 15
    assert response.provider == "openai"
    assert client.timeout_options == [{"timeout": 20.0}]
    sent = client.chat.completions.calls[0]
    assert sent["model"] == "openai-model"
    assert sent["stream"] is False
    assert sent["messages"] == [{"role": "user", "content": "Tell me something"}]

    await provider.aclose()
    assert client.closed is True


@pytest.mark.asyncio
async def test_openai_provider_drops_tools_without_capability():
    client = _FakeClient({"choices": [{"message": {"content": "ok"}}]})
    provider = _provider(client, capabilities=ProviderCapabilities(supports_tool_calls=False))
    request = _request()
    request.tools = [{"type": "function", "function": {"name": "clock"}}]
    request.tool_choice = "auto"

    await provider.complete(request)

    sent = client.chat.completions.calls[0]
    assert "tools" not in sent
    assert "tool_choice" not in sent


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (
            lambda: RateLimitError(
                "throttle", response=httpx.Response(429, request=_http_request()), body=None
            ),
            RateLimited,
        ),
        (
            lambda: APIStatusError(
                "missing model", response=httpx.Response(404, request=_http_request()), body=None
            ),
            ModelNotFound,
        ),
        (lambda: APITimeoutError(request=_http_request()), ProviderTimeout),
        (lambda: APIConnectionError(request=_http_request()), ConnectionFailed),
    ],
)
async def test_openai_provider_error_mapping(error, expected):
    provider = _provider(_FakeClient(error()))

    with pytest.raises(expected) as exc:
        await provider.complete(_request())

    assert exc.value.provider == "openai"


@pytest.mark.asyncio
async def test_openai_provider_server_status_is_retryable():
    failure = APIStatusError("boom", response=httpx.Response(503, request=_http_request()), body=None)
    provider = _provider(_FakeClient(failure))

    with pytest.raises(Exception) as exc:
        await provider.complete(_request())

    assert exc.value.kind is ErrorKind.SERVER_ERROR
    assert exc.value.status_code == 503
    assert exc.value.retryable is True


@pytest.mark.asyncio
async def test_openai_health_check_lists_models():
    provider = _provider(_FakeClient(models=[{"id": "gpt-a"}, {"id": "gpt-b"}]))

    status = await provider.health_check()

    assert status.healthy is True
    assert status.models == ["gpt-a", "gpt-b"]


@pytest.mark.asyncio
async def test_openai_health_check_reports_failure():
    provider = _provider(_FakeClient(models=APIConnectionError(request=_http_request())))

    status = await provider.health_check()

    assert status.healthy is False
    assert status.detail
