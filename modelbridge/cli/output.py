"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from modelbridge.llm.commands import CommandSuggestion
from modelbridge.llm.providers.base import Provider
from modelbridge.llm.registry import ProviderHealth, ValidationSummary
from modelbridge.llm.types import HealthStatus, StreamEvent

HEALTH_COLORS = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.DEGRADED: "yellow",
    HealthStatus.UNHEALTHY: "red",
}


class OutputFormatter:
    """Rich-based output formatting for the modelbridge CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_provider_list(self, providers: list[Provider], active: str | None) -> None:
        if not providers:
            self.console.print("[dim]No providers configured.[/dim]")
            return

        table = Table(title="Providers")
        table.add_column("", no_wrap=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Display name")
        table.add_column("Model")
        table.add_column("Base URL")
        table.add_column("Enabled", no_wrap=True)

        for p in providers:
            marker = "*" if p.name == active else ""
            enabled = Text("yes", style="green") if p.is_enabled() else Text("no", style="dim")
            table.add_row(
                marker,
                p.name,
                p.display_name,
                p.config.model or "[dim]default[/dim]",
                p.config.base_url or "[dim]default[/dim]",
                enabled,
            )

        self.console.print(table)

    def format_health(self, results: list[ProviderHealth]) -> None:
        table = Table(title="Provider Health")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Status", no_wrap=True)
        table.add_column("Latency", justify="right")
        table.add_column("Cached", no_wrap=True)

        for h in results:
            color = HEALTH_COLORS.get(h.status, "white")
            latency = f"{h.latency_ms:.0f} ms" if h.latency_ms is not None else "-"
            table.add_row(
                h.provider,
                Text(h.status.value, style=color),
                latency,
                "yes" if h.cached else "",
            )

        self.console.print(table)

    def format_validation(self, results: list[ValidationSummary]) -> None:
        for r in results:
            status = "[green]OK[/green]" if r.valid else "[red]INVALID[/red]"
            self.console.print(f"  [{r.provider}] {status}")
            for err in r.errors:
                self.console.print(f"    [red]error:[/red] {err}")
            for warn in r.warnings:
                self.console.print(f"    [yellow]warning:[/yellow] {warn}")

    def format_event(self, event: StreamEvent) -> None:
        """Render one stream event inline as it arrives."""
        if event.type == "text_delta":
            self.console.print(event.text, end="", markup=False, highlight=False)
        elif event.type == "tool_use_start":
            self.console.print(f"\n[yellow]tool call[/yellow] {event.name} ({event.id})")
        elif event.type == "tool_use_end":
            self.console.print(f"  [dim]{json.dumps(event.input)}[/dim]")
        elif event.type == "message_end":
            self.console.print()
        elif event.type == "error":
            self.console.print(f"\n[red]Error:[/red] {event.message}")

    def format_command(self, suggestion: CommandSuggestion) -> None:
        self.console.print(Panel(
            f"[bold]{suggestion.command}[/bold]\n\n"
            f"{suggestion.explanation}\n\n"
            f"[dim]Confidence:[/dim] {suggestion.confidence:.2f}",
            title="Suggested command",
        ))

    def format_config(self, config: dict[str, Any]) -> None:
        config_json = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_json, "json", theme="monokai"))
