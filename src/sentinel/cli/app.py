"""Unified CLI entry point for Sentinel.

Config precedence: settings.default.toml -> settings.<env>.toml -> settings.local.toml -> env vars (SENTINEL_* with double underscores) -> CLI flags.
"""

from __future__ import annotations

import typer

from sentinel.cli.playbook_cmd import playbook_app
from sentinel.cli.settings_cmd import settings_app

try:
    from importlib.metadata import version

    VERSION = version("sentinel-playbooks")
except Exception:
    VERSION = "unknown"

APP_HELP = (
    "sentinel — playbook-driven opportunity discovery. "
    "Runs declarative browser playbooks and extracts grant, residency and exhibition listings. "
    "Config precedence: settings.default.toml -> settings.local.toml -> env vars (SENTINEL_* with __) -> CLI flags."
)

app = typer.Typer(add_completion=True, help=APP_HELP)

app.add_typer(playbook_app, name="playbook")
app.add_typer(settings_app, name="settings")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    log_level: str = typer.Option("", "--log-level", help="Override the configured log level."),
) -> None:
    """Configure logging and show help when no subcommand is provided."""
    if version:
        typer.echo(f"sentinel {VERSION}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()

    from sentinel.logging_setup import configure_logging
    from sentinel.settings import get_settings

    settings = get_settings()
    configure_logging(log_level or settings.log_level, settings.log_format)


if __name__ == "__main__":
    app()
