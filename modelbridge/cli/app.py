"""
Main CLI application for modelbridge.

Usage:
    mb providers
    mb health [--refresh]
    mb chat PROMPT [--provider NAME] [--no-stream] [--system TEXT]
    mb command TEXT [--provider NAME]
    mb config show|validate
    mb version
"""

from __future__ import annotations

import asyncio
import logging
import os
import platform
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from modelbridge.config import DEFAULT_CONFIG_PATH, BridgeConfig, build_registry, load_config

app = typer.Typer(name="mb", help="modelbridge - one streaming interface for many LLM providers")
config_app = typer.Typer(help="Configuration management")

app.add_typer(config_app, name="config")

console = Console()
err_console = Console(stderr=True)

_state: dict[str, Optional[str]] = {"config": None, "profile": None, "log_level": None}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path:
    """Explicit --config, then MODELBRIDGE_CONFIG, then the default location."""
    raw = _state["config"] or os.environ.get("MODELBRIDGE_CONFIG") or DEFAULT_CONFIG_PATH
    return Path(raw).expanduser()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load() -> BridgeConfig:
    overrides = {"log_level": _state["log_level"]} if _state["log_level"] else None
    cfg = load_config(_get_config_path(), profile=_state["profile"], cli_overrides=overrides)
    _setup_logging(cfg.log_level)
    return cfg


def _registry_for(cfg: BridgeConfig, provider: str | None = None):
    registry = build_registry(cfg)
    if not len(registry):
        console.print(f"[red]No providers configured.[/red] Add some to {_get_config_path()}")
        raise typer.Exit(1)
    if provider and not registry.set_active(provider):
        console.print(f"[red]Provider not found:[/red] {provider}")
        raise typer.Exit(1)
    return registry


@app.callback()
def _main(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to a YAML config file"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the log level"),
):
    _state["config"] = config
    _state["profile"] = profile
    _state["log_level"] = log_level


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def providers():
    """List configured providers."""
    from modelbridge.cli.output import OutputFormatter

    registry = _registry_for(_load())
    OutputFormatter(console).format_provider_list(registry.providers(), registry.active_name)


@app.command()
def health(
    refresh: bool = typer.Option(False, "--refresh", help="Ignore cached results"),
):
    """Check the health of every configured provider."""
    from modelbridge.cli.output import OutputFormatter

    registry = _registry_for(_load())
    results = asyncio.run(registry.check_all_health(force_refresh=refresh))
    OutputFormatter(console).format_health(results)


@app.command()
def chat(
    prompt: str = typer.Argument(..., help="Message to send"),
    provider: Optional[str] = typer.Option(None, help="LLM provider name"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Wait for the full reply"),
    system: Optional[str] = typer.Option(None, "--system", help="System prompt"),
):
    """Send one message to the active (or named) provider."""
    from modelbridge.cli.output import OutputFormatter
    from modelbridge.llm.errors import ProviderError
    from modelbridge.llm.types import ChatMessage, ChatRequest, MessageRole

    cfg = _load()
    registry = _registry_for(cfg, provider)
    active = registry.active_provider
    request = ChatRequest(
        messages=[ChatMessage(role=MessageRole.USER, content=prompt)],
        max_tokens=active.config.max_tokens,
        system_prompt=system,
        stream=not no_stream,
    )
    formatter = OutputFormatter(console)

    async def _run() -> bool:
        if no_stream:
            try:
                response = await registry.chat(request)
            except ProviderError as e:
                console.print(f"[red]Error:[/red] {e}")
                return False
            console.print(response.message.content, markup=False, highlight=False)
            return True

        async with registry.chat_stream(request) as stream:
            async for event in stream:
                formatter.format_event(event)
            return stream.terminal_event is not None and stream.terminal_event.type != "error"

    if not asyncio.run(_run()):
        raise typer.Exit(1)


@app.command()
def command(
    text: str = typer.Argument(..., help="What you want the command to do"),
    provider: Optional[str] = typer.Option(None, help="LLM provider name"),
):
    """Turn a natural-language description into a shell command."""
    from modelbridge.cli.output import OutputFormatter
    from modelbridge.llm.commands import CommandGenerator, ShellContext
    from modelbridge.llm.errors import ProviderError

    registry = _registry_for(_load(), provider)
    context = ShellContext(
        current_directory=str(Path.cwd()),
        operating_system=platform.system(),
        shell=os.environ.get("SHELL"),
    )
    try:
        suggestion = asyncio.run(CommandGenerator(registry).generate_command(text, context))
    except ProviderError as e:
        console.print(f"[red]Command generation failed:[/red] {e}")
        raise typer.Exit(1)
    OutputFormatter(console).format_command(suggestion)


@config_app.command("show")
def config_show():
    """Show effective config (secrets masked)."""
    from modelbridge.cli.output import OutputFormatter

    cfg = _load()
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate():
    """Validate config, proxy URLs and every provider's settings."""
    from modelbridge.cli.output import OutputFormatter
    from modelbridge.network.proxy import ProxyResolver

    config_path = _get_config_path()
    try:
        cfg = _load()
        registry = build_registry(cfg)
    except Exception as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    if config_path.is_file():
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  Active provider: {registry.active_name or '(none)'}")

    ok = True
    for label, url in (("http_proxy", cfg.proxy.http_proxy), ("https_proxy", cfg.proxy.https_proxy)):
        valid, message = ProxyResolver.validate_proxy_url(url)
        if not valid:
            ok = False
            console.print(f"  [red]{label}:[/red] {message}")

    results = registry.validate_all()
    OutputFormatter(console).format_validation(results)
    ok = ok and all(r.valid for r in results)

    if not ok:
        raise typer.Exit(1)
    console.print("[green]Config is valid.[/green]")


@app.command()
def version():
    """Show version."""
    console.print("modelbridge v0.1.0")


def main():
    app()


if __name__ == "__main__":
    main()
