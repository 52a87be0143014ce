"""CLI command tests for the relay gateway."""

import json

from typer.testing import CliRunner

from conftest import completion, fake_factory

from relay_gateway.cli import app
from relay_gateway.config import ConfigError
from relay_gateway.registry import ProviderRegistry


def _baseline_env():
    return {
        "RELAY_LLAMAEDGE_API_URL": "http://llama.local:8080",
        "RELAY_OPENAI_API_KEY": "test-key",
        "RELAY_REDIS_URL": "",
    }


def _fake_registry(monkeypatch, *, unhealthy=()):
    factory = fake_factory(
        {"llamaedge": [completion("from llama")], "openai": [completion("from openai")]},
        unhealthy=unhealthy,
    )
    original = ProviderRegistry.from_config.__func__

    def _from_config(cls, config, **kwargs):
        return original(cls, config, factory=factory)

    monkeypatch.setattr(ProviderRegistry, "from_config", classmethod(_from_config))
    return factory.created


def test_cli_healthcheck(monkeypatch):
    """`relay-gateway healthcheck` should report status based on the active provider."""
    runner = CliRunner()

    async def fake_healthcheck(config):
        return True

    monkeypatch.setattr("relay_gateway.cli.perform_healthcheck", fake_healthcheck)

    result = runner.invoke(app, ["healthcheck"], env=_baseline_env())

    assert result.exit_code == 0
    assert "healthy" in result.stdout.lower()


def test_cli_healthcheck_failure(monkeypatch):
    """Healthcheck failures should exit non-zero."""
    runner = CliRunner()

    async def _failing_healthcheck(config):
        return False

    monkeypatch.setattr("relay_gateway.cli.perform_healthcheck", _failing_healthcheck)

    result = runner.invoke(app, ["healthcheck"], env=_baseline_env())

    assert result.exit_code == 1
    assert "unhealthy" in result.stdout.lower()


def test_cli_configuration_error(monkeypatch):
    """Configuration errors should surface with exit code 2."""
    runner = CliRunner()

    def _raise_config_error():
        raise ConfigError("bad config")

    monkeypatch.setattr(
        "relay_gateway.cli.GatewayConfig.from_env",
        classmethod(lambda cls: _raise_config_error()),
    )

    result = runner.invoke(app, ["healthcheck"])

    assert result.exit_code == 2
    assert "configuration error" in result.output.lower()


def test_cli_providers_lists_health(monkeypatch):
    runner = CliRunner()
    _fake_registry(monkeypatch, unhealthy=("openai",))

    result = runner.invoke(app, ["providers"], env=_baseline_env())

    assert result.exit_code == 0
    info = json.loads(result.stdout)
    assert info["activeProvider"] == "llamaedge"
    assert info["providers"]["openai"]["healthy"] is False


def test_cli_switch_rejects_unhealthy_provider(monkeypatch):
    runner = CliRunner()
    _fake_registry(monkeypatch, unhealthy=("openai",))

    result = runner.invoke(app, ["switch", "openai"], env=_baseline_env())

    assert result.exit_code == 1
    assert "not healthy" in result.output


def test_cli_switch_to_healthy_provider(monkeypatch):
    runner = CliRunner()
    _fake_registry(monkeypatch)

    result = runner.invoke(app, ["switch", "openai"], env=_baseline_env())

    assert result.exit_code == 0
    assert "'openai' is healthy" in result.stdout
    assert "'llamaedge'" in result.stdout


def test_cli_chat_prints_reply(monkeypatch):
    runner = CliRunner()
    _fake_registry(monkeypatch)

    result = runner.invoke(app, ["chat", "Hello!"], env=_baseline_env())

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["success"] is True
    assert payload["message"]["content"] == "from llama"
    assert payload["metadata"]["messageCount"] == 2


def test_cli_chat_streams_events(monkeypatch):
    runner = CliRunner()
    _fake_registry(monkeypatch)

    result = runner.invoke(app, ["chat", "Hello!", "--stream"], env=_baseline_env())

    assert result.exit_code == 0
    assert "event: start" in result.stdout
    assert "event: chunk" in result.stdout
    assert "event: complete" in result.stdout


def test_cli_chat_unknown_session(monkeypatch):
    runner = CliRunner()
    _fake_registry(monkeypatch)

    result = runner.invoke(app, ["chat", "Hello!", "--session", "missing"], env=_baseline_env())

    assert result.exit_code == 1
    assert "not found" in result.output
