"""Tests for cross-provider failover."""

import pytest

from conftest import completion, fake_factory, provider_config

from relay_gateway.errors import AllProvidersFailed
from relay_gateway.failover import FailoverSequencer
from relay_gateway.providers.base import (
    CompletionRequest,
    ConnectionFailed,
    ErrorKind,
    InvalidRequest,
    Message,
    ModelNotFound,
    RateLimited,
    ServerError,
)
from relay_gateway.registry import ProviderRegistry
from relay_gateway.retry import RetryPolicy


async def _no_sleep(_):
    return None


def _request(text="Hello!"):
    return CompletionRequest(messages=[Message(role="user", content=text)])


def _sequencer(scripts, *, primary="alpha", fallback=True, metrics=None, attempts=2):
    factory = fake_factory(scripts)
    registry = ProviderRegistry(
        [provider_config(name) for name in scripts],
        primary=primary,
        fallback_enabled=fallback,
        factory=factory,
    )
    sequencer = FailoverSequencer(
        registry,
        RetryPolicy(max_attempts=attempts, base_delay=0.01, sleep=_no_sleep),
        metrics=metrics,
    )
    return sequencer, registry, factory.created


@pytest.mark.asyncio
async def test_failover_to_healthy_provider_and_promote(recorder_metrics):
    sequencer, registry, created = _sequencer(
        {"alpha": [ServerError("alpha down")], "beta": [completion("beta answer")]},
        metrics=recorder_metrics,
    )

    response = await sequencer.create_completion(_request())

    assert response.content == "beta answer"
    assert response.provider == "beta"
    assert response.attempt == 2
    assert registry.active == "beta"
    # alpha used its whole retry budget before failover
    assert created["alpha"].calls == 2
    assert recorder_metrics.events[-1].status == "success"
    assert recorder_metrics.events[-1].fallback is True


@pytest.mark.asyncio
async def test_sticky_provider_preferred_on_next_call():
    sequencer, registry, created = _sequencer(
        {"alpha": [ServerError("alpha down")], "beta": [completion("beta answer")]},
    )
    await sequencer.create_completion(_request())
    alpha_calls = created["alpha"].calls

    response = await sequencer.create_completion(_request("again"))

    assert response.provider == "beta"
    assert response.attempt == 1
    assert created["alpha"].calls == alpha_calls


@pytest.mark.asyncio
async def test_success_regardless_of_position():
    scripts = {
        "alpha": [ConnectionFailed("refused")],
        "beta": [RateLimited("busy")],
        "gamma": [ModelNotFound("no such model")],
        "delta": [completion("delta answer")],
    }
    sequencer, registry, created = _sequencer(scripts)

    response = await sequencer.create_completion(_request())

    assert response.provider == "delta"
    assert registry.active == "delta"
    # model-not-found is terminal for retry but still fails over
    assert created["gamma"].calls == 1


@pytest.mark.asyncio
async def test_invalid_request_short_circuits(recorder_metrics):
    original = InvalidRequest("messages must not be empty")
    sequencer, registry, created = _sequencer(
        {"alpha": [original], "beta": [completion("never")]},
        metrics=recorder_metrics,
    )

    with pytest.raises(InvalidRequest) as exc:
        await sequencer.create_completion(_request())

    assert exc.value is original
    assert created["alpha"].calls == 1
    assert created["beta"].calls == 0
    assert registry.active == "alpha"
    assert recorder_metrics.events[-1].error_kind == "INVALID_REQUEST"


@pytest.mark.asyncio
async def test_all_providers_failed_keeps_last_error(recorder_metrics):
    last = ConnectionFailed("beta unreachable")
    sequencer, registry, _ = _sequencer(
        {"alpha": [ServerError("alpha down")], "beta": [last]},
        metrics=recorder_metrics,
    )

    with pytest.raises(AllProvidersFailed) as exc:
        await sequencer.create_completion(_request())

    assert exc.value.last_error is last
    assert exc.value.__cause__ is last
    assert exc.value.tried == ["alpha", "beta"]
    assert registry.active == "alpha"
    assert recorder_metrics.events[-1].status == "error"
    assert recorder_metrics.events[-1].attempts == 2


@pytest.mark.asyncio
async def test_fallback_disabled_tries_only_active():
    sequencer, _, created = _sequencer(
        {"alpha": [ServerError("alpha down")], "beta": [completion("beta answer")]},
        fallback=False,
    )

    with pytest.raises(AllProvidersFailed) as exc:
        await sequencer.create_completion(_request())

    assert exc.value.tried == ["alpha"]
    assert created["beta"].calls == 0


@pytest.mark.asyncio
async def test_explicit_fallback_argument_overrides_registry_default():
    sequencer, _, _ = _sequencer(
        {"alpha": [ServerError("alpha down")], "beta": [completion("beta answer")]},
        fallback=False,
    )
    response = await sequencer.create_completion(_request(), fallback_enabled=True)
    assert response.provider == "beta"


@pytest.mark.asyncio
async def test_unexpected_exception_is_wrapped_and_fails_over():
    sequencer, _, created = _sequencer(
        {"alpha": [RuntimeError("bug")], "beta": [completion("beta answer")]},
        attempts=1,
    )

    response = await sequencer.create_completion(_request())

    assert response.provider == "beta"
    assert created["alpha"].calls == 1


@pytest.mark.asyncio
async def test_all_failed_error_kind_is_reported():
    sequencer, _, _ = _sequencer({"alpha": [RateLimited("busy")]}, attempts=3)

    with pytest.raises(AllProvidersFailed) as exc:
        await sequencer.create_completion(_request())

    assert exc.value.last_error.kind is ErrorKind.RATE_LIMITED
    assert exc.value.last_error.provider == "alpha"
