"""CLI entry point for the relay gateway."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import typer

from .config import ConfigError, GatewayConfig
from .errors import GatewayError
from .gateway import ChatGateway, perform_healthcheck
from .providers.base import ProviderError
from .registry import ProviderRegistry
from .responses import reply_payload

app = typer.Typer(help="Relay chat messages to LLM providers with automatic failover.")


def _load_config() -> GatewayConfig:
    try:
        config = GatewayConfig.from_env()
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
    return config


def _build_registry(config: GatewayConfig) -> ProviderRegistry:
    try:
        return ProviderRegistry.from_config(config)
    except (ConfigError, GatewayError) as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


def _echo_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


class _EchoTransport:
    """Writes SSE frames to stdout."""

    async def send(self, frame: str) -> None:
        typer.echo(frame, nl=False)

    async def close(self) -> None:
        return None


@app.command()
def healthcheck() -> None:
    """Probe the active provider and report status."""
    config = _load_config()

    async def _runner() -> bool:
        return await perform_healthcheck(config)

    try:
        healthy = asyncio.run(_runner())
    except GatewayError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    if not healthy:
        typer.secho("Gateway is unhealthy", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho("Gateway is healthy", fg=typer.colors.GREEN)


@app.command()
def providers() -> None:
    """Show configured providers and their health."""
    config = _load_config()
    registry = _build_registry(config)

    async def _runner() -> dict:
        try:
            await registry.health_report()
            return registry.providers_info()
        finally:
            await registry.aclose()

    _echo_json(asyncio.run(_runner()))


@app.command()
def models(provider: Optional[str] = typer.Option(None, help="Provider name; defaults to the active one.")) -> None:
    """List the model catalog of a provider."""
    config = _load_config()
    registry = _build_registry(config)

    async def _runner() -> dict:
        try:
            return await registry.server_info(provider)
        finally:
            await registry.aclose()

    try:
        _echo_json(asyncio.run(_runner()))
    except GatewayError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def switch(name: str) -> None:
    """Check that a provider is healthy enough to become the active one."""
    config = _load_config()
    registry = _build_registry(config)

    async def _runner() -> str:
        try:
            return await registry.switch_provider(name)
        finally:
            await registry.aclose()

    try:
        previous = asyncio.run(_runner())
    except GatewayError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.secho(
        f"Provider '{name}' is healthy and can replace '{previous}' as the active provider",
        fg=typer.colors.GREEN,
    )


@app.command()
def chat(
    message: str,
    session: Optional[str] = typer.Option(None, help="Existing session id; a new session is created otherwise."),
    stream: bool = typer.Option(False, "--stream", help="Print the reply as Server-Sent Events."),
) -> None:
    """Send one message through the gateway."""
    config = _load_config()

    async def _runner() -> None:
        gateway = ChatGateway(config=config)
        async with gateway:
            session_id = session or (await gateway.create_session("cli")).id
            if stream:
                await gateway.stream_message(session_id, message, _EchoTransport())
                return
            reply = await gateway.send_message(session_id, message)
            _echo_json(reply_payload(reply))

    try:
        asyncio.run(_runner())
    except (GatewayError, ProviderError) as exc:
        typer.secho(f"Chat failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def main() -> None:
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    main()
