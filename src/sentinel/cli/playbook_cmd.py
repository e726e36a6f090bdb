"""CLI commands for playbook management.

Subcommands for listing, inspecting, validating, importing, exporting and
running playbooks without needing the API server running.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from sentinel.playbook.manager import PlaybookManager

playbook_app = typer.Typer(help="Manage playbooks — list, show, validate, run, import and export.")
console = Console()


def _get_manager() -> PlaybookManager:
    """Return an initialized manager backed by the configured directories."""
    from sentinel.playbook.manager import PlaybookManager

    manager = PlaybookManager.from_settings()
    manager.initialize()
    return manager


def _parse_vars(pairs: list[str]) -> dict[str, str]:
    variables: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            console.print(f"[red]Invalid variable (expected key=value):[/red] {pair}")
            raise typer.Exit(code=1)
        variables[key] = value
    return variables


# ---------------------------------------------------------------------------
# sentinel playbook list
# ---------------------------------------------------------------------------


@playbook_app.command("list")
def playbook_list(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON."),
    tag: Optional[list[str]] = typer.Option(None, "--tag", "-t", help="Only playbooks carrying any of these tags."),
    author: Optional[str] = typer.Option(None, "--author", help="Only playbooks by this author."),
) -> None:
    """List stored playbooks."""
    from sentinel.playbook.models import PlaybookSearchFilters

    manager = _get_manager()
    playbooks = manager.search(PlaybookSearchFilters(tags=tag or None, author=author))

    if not playbooks:
        console.print(f"No playbooks found in {manager.store.definitions_dir}")
        return

    if json_output:
        data = [
            {
                "id": pb.id,
                "name": pb.name,
                "version": pb.version,
                "actions": len(pb.actions),
                "extractionRules": len(pb.extraction_rules),
                "tags": pb.tags,
            }
            for pb in playbooks
        ]
        console.print_json(json.dumps(data, indent=2))
        return

    table = Table(title=f"Playbooks ({manager.store.definitions_dir})")
    table.add_column("ID", style="cyan")
    table.add_column("Name", max_width=40)
    table.add_column("Version", style="dim")
    table.add_column("Actions", justify="right")
    table.add_column("Rules", justify="right")
    table.add_column("Tags")

    for pb in playbooks:
        table.add_row(
            pb.id,
            pb.name,
            pb.version,
            str(len(pb.actions)),
            str(len(pb.extraction_rules)),
            ", ".join(pb.tags) if pb.tags else "",
        )

    console.print(table)
    console.print(f"\n[bold]{len(playbooks)}[/bold] playbook(s) loaded")


# ---------------------------------------------------------------------------
# sentinel playbook show <id>
# ---------------------------------------------------------------------------


@playbook_app.command("show")
def playbook_show(
    playbook_id: str = typer.Argument(..., help="Playbook ID to display."),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON."),
) -> None:
    """Display full details of a single playbook."""
    manager = _get_manager()
    match = manager.get(playbook_id)

    if not match:
        console.print(f"[red]Playbook not found:[/red] {playbook_id}")
        available = [pb.id for pb in manager.list_playbooks()]
        if available:
            console.print(f"  Available: {', '.join(available)}")
        raise typer.Exit(code=1)

    if json_output:
        console.print_json(json.dumps(match.to_json_dict(), indent=2))
        return

    eh = match.error_handling
    console.print(f"[bold cyan]{match.id}[/bold cyan]  v{match.version}")
    console.print(f"  Name:        {match.name}")
    console.print(f"  Description: {match.description or '(none)'}")
    console.print(f"  Author:      {match.author or '(unknown)'}")
    console.print(f"  Target site: {match.metadata.target_site or '(none)'}")
    console.print(f"  On error:    {'continue' if eh.continue_on_error else 'abort'} (retries={eh.max_retries})")
    if match.tags:
        console.print(f"  Tags:        {', '.join(match.tags)}")

    console.print(f"\n[bold]Actions ({len(match.actions)}):[/bold]")
    _print_actions(match.actions, indent=1)

    if match.extraction_rules:
        console.print(f"\n[bold]Extraction rules ({len(match.extraction_rules)}):[/bold]")
        for rule in match.extraction_rules:
            required = " [red]required[/red]" if rule.required else ""
            attr = f" @{rule.attribute}" if rule.attribute else ""
            console.print(f"  • {rule.field:14s} {rule.selector}{attr}{required}")


def _print_actions(actions, indent: int) -> None:
    pad = "  " * indent
    for i, action in enumerate(actions, 1):
        sel_display = f" {action.selector}" if action.selector else ""
        value_display = f' "{action.value}"' if action.value not in (None, "") else ""
        desc = f" — {action.description}" if action.description else ""
        optional = " [dim](optional)[/dim]" if action.optional else ""
        console.print(
            f"{pad}{i:2d}. [yellow]{action.type.value:11s}[/yellow] {action.id}{sel_display}{value_display}{desc}{optional}"
        )
        if action.actions:
            _print_actions(action.actions, indent + 2)


# ---------------------------------------------------------------------------
# sentinel playbook validate <path>
# ---------------------------------------------------------------------------


@playbook_app.command("validate")
def playbook_validate(
    path: Path = typer.Argument(..., help="Path to a playbook JSON file."),
) -> None:
    """Validate a playbook JSON file against the structural rules."""
    from sentinel.exceptions import PlaybookStorageError
    from sentinel.playbook.store import read_json
    from sentinel.playbook.validation import validate_playbook
    from sentinel.settings import get_settings

    try:
        data = read_json(path)
    except PlaybookStorageError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1) from None
    if not isinstance(data, dict):
        console.print("[red]✗ Playbook file must contain a JSON object[/red]")
        raise typer.Exit(code=1)

    result = validate_playbook(data, max_depth=get_settings().playbook.max_action_depth)
    for warning in result.warnings:
        console.print(f"  [yellow]warning:[/yellow] {warning}")

    if not result.is_valid:
        console.print("[red]✗ Validation errors:[/red]")
        for error in result.errors:
            console.print(f"  {error}")
        raise typer.Exit(code=1)

    console.print(f"[green]✓[/green] Valid playbook: {data.get('id')} ({len(data.get('actions') or [])} actions)")


# ---------------------------------------------------------------------------
# sentinel playbook stats [id]
# ---------------------------------------------------------------------------


@playbook_app.command("stats")
def playbook_stats(
    playbook_id: Optional[str] = typer.Argument(None, help="Limit to one playbook."),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON."),
) -> None:
    """Show execution statistics."""
    manager = _get_manager()
    if playbook_id:
        single = manager.stats(playbook_id)
        if single is None:
            console.print(f"[red]Playbook not found:[/red] {playbook_id}")
            raise typer.Exit(code=1)
        rows = [single]
    else:
        rows = manager.all_stats()

    if json_output:
        console.print_json(json.dumps([s.to_json_dict() for s in rows], indent=2))
        return

    table = Table(title="Playbook statistics")
    table.add_column("ID", style="cyan")
    table.add_column("Runs", justify="right")
    table.add_column("OK", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Success %", justify="right")
    table.add_column("Avg ms", justify="right")
    table.add_column("Avg found", justify="right")
    table.add_column("Last run", style="dim")

    for s in rows:
        table.add_row(
            s.id,
            str(s.total_executions),
            str(s.successful_executions),
            str(s.failed_executions),
            f"{s.success_rate:.1f}",
            f"{s.average_execution_time:.0f}",
            f"{s.average_opportunities_found:.1f}",
            s.last_executed.isoformat(timespec="seconds") if s.last_executed else "never",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# sentinel playbook history <id>
# ---------------------------------------------------------------------------


@playbook_app.command("history")
def playbook_history(
    playbook_id: str = typer.Argument(..., help="Playbook ID."),
    limit: int = typer.Option(20, "--limit", "-n", help="Most recent entries to show."),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON."),
) -> None:
    """Show execution history for a playbook, newest last."""
    manager = _get_manager()
    entries = manager.history(playbook_id)[-limit:] if limit > 0 else manager.history(playbook_id)

    if json_output:
        console.print_json(json.dumps([e.to_json_dict() for e in entries], indent=2))
        return
    if not entries:
        console.print(f"No executions recorded for {playbook_id}")
        return

    table = Table(title=f"History for {playbook_id}")
    table.add_column("Executed at", style="dim")
    table.add_column("Result", justify="center")
    table.add_column("Found", justify="right")
    table.add_column("ms", justify="right")
    table.add_column("First error", max_width=60)
    for e in entries:
        table.add_row(
            e.executed_at.isoformat(timespec="seconds"),
            "[green]✓[/green]" if e.success else "[red]✗[/red]",
            str(e.opportunities_found),
            f"{e.execution_time:.0f}",
            e.errors[0] if e.errors else "",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# sentinel playbook export / import / from-template / delete
# ---------------------------------------------------------------------------


@playbook_app.command("export")
def playbook_export(
    playbook_id: str = typer.Argument(..., help="Playbook ID to export."),
    output: Path = typer.Argument(..., help="Destination JSON file."),
) -> None:
    """Export a stored playbook to a JSON file."""
    from sentinel.exceptions import PlaybookNotFoundError

    manager = _get_manager()
    try:
        path = manager.export(playbook_id, output)
    except PlaybookNotFoundError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1) from None
    console.print(f"[green]✓[/green] Exported {playbook_id} to {path}")


@playbook_app.command("import")
def playbook_import(
    path: Path = typer.Argument(..., help="Playbook JSON file to import."),
) -> None:
    """Validate and store a playbook from a JSON file."""
    from sentinel.exceptions import SentinelError

    manager = _get_manager()
    try:
        playbook = manager.import_(path)
    except SentinelError as e:
        console.print(f"[red]✗ Import failed:[/red] {e}")
        raise typer.Exit(code=1) from None
    console.print(f"[green]✓[/green] Imported playbook: {playbook.id} ({playbook.name})")


@playbook_app.command("from-template")
def playbook_from_template(
    template: str = typer.Argument(..., help="Template name (file stem in the templates directory)."),
    playbook_id: str = typer.Argument(..., help="ID for the new playbook."),
) -> None:
    """Create a playbook from a stored template."""
    from sentinel.exceptions import SentinelError

    manager = _get_manager()
    try:
        playbook = manager.create_from_template(template, playbook_id)
    except SentinelError as e:
        console.print(f"[red]✗[/red] {e}")
        available = manager.store.list_templates()
        if available:
            console.print(f"  Templates: {', '.join(available)}")
        raise typer.Exit(code=1) from None
    console.print(f"[green]✓[/green] Created playbook: {playbook.id} ({playbook.name})")


@playbook_app.command("delete")
def playbook_delete(
    playbook_id: str = typer.Argument(..., help="Playbook ID to delete."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete a stored playbook. Its execution history is kept."""
    from sentinel.exceptions import PlaybookNotFoundError

    manager = _get_manager()
    if not yes:
        typer.confirm(f"Delete playbook {playbook_id}?", abort=True)
    try:
        manager.delete(playbook_id)
    except PlaybookNotFoundError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1) from None
    console.print(f"[green]✓[/green] Deleted {playbook_id}")


# ---------------------------------------------------------------------------
# sentinel playbook run <id>
# ---------------------------------------------------------------------------


@playbook_app.command("run")
def playbook_run(
    playbook_id: str = typer.Argument(..., help="Playbook ID to execute."),
    var: Optional[list[str]] = typer.Option(None, "--var", "-v", help="Variable override as key=value."),
    headed: bool = typer.Option(False, "--headed", help="Show the browser window."),
    max_duration: Optional[float] = typer.Option(
        None, "--max-duration", help="Run deadline in seconds (0 disables)."
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output the full result as JSON."),
) -> None:
    """Execute a playbook in a Playwright chromium browser and print the opportunities found."""
    from sentinel.browser.playwright_page import launch_browser
    from sentinel.exceptions import PlaybookNotFoundError
    from sentinel.settings import get_settings

    manager = _get_manager()
    variables = _parse_vars(var or [])
    browser_settings = get_settings().browser
    if headed:
        browser_settings = browser_settings.model_copy(update={"headless": False})
    engine_kwargs = {} if max_duration is None else {"max_run_duration_sec": max_duration}

    async def _run():
        async with launch_browser(browser_settings) as browser:
            return await manager.execute(playbook_id, browser, variables, **engine_kwargs)

    try:
        result = asyncio.run(_run())
    except PlaybookNotFoundError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print_json(json.dumps(result.to_json_dict(), indent=2))
    else:
        status = "[green]SUCCESS[/green]" if result.success else "[red]FAILED[/red]"
        console.print(f"{status} {playbook_id}: {len(result.opportunities)} opportunities in {result.execution_time:.0f}ms")
        for opp in result.opportunities:
            org = f" [dim]({opp.organization})[/dim]" if opp.organization else ""
            console.print(f"  • {opp.title}{org}\n    {opp.url}")
        for warning in result.warnings:
            console.print(f"  [yellow]warning:[/yellow] {warning}")
        for error in result.errors:
            console.print(f"  [red]error:[/red] {error}")

    if not result.success:
        raise typer.Exit(code=1)
