"""CLI commands for inspecting Sentinel settings."""

from __future__ import annotations

import json

import typer
from rich.console import Console

settings_app = typer.Typer(help="Inspect and validate Sentinel configuration.")
console = Console()


@settings_app.command("show")
def show_settings() -> None:
    """Display the currently resolved settings."""
    from sentinel.settings import get_settings

    settings = get_settings()
    console.print_json(json.dumps(settings.model_dump(mode="json"), indent=2, default=str))


@settings_app.command("validate")
def validate_settings() -> None:
    """Validate settings and report the resolved playbook directories."""
    from sentinel.settings import get_settings

    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"[red]✗[/red] Settings validation failed: {e}")
        raise typer.Exit(code=1) from None

    console.print("[green]✓[/green] Settings are valid.")
    console.print(f"  Environment:  {settings.env}")
    console.print(f"  Definitions:  {settings.playbook.definitions_dir}")
    console.print(f"  Templates:    {settings.playbook.templates_dir}")
    console.print(f"  History:      {settings.playbook.history_dir}")
