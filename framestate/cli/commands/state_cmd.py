"""``framestate state`` / ``snapshot`` / ``compute`` / ``activities`` / ``verify``.

Read-side commands.  ``state`` merges the latest snapshot with the
activity tail on every display; nothing is cached between refreshes.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from framestate.cli.commands._shared import (
    LOG_DB_OPTION,
    SNAPSHOT_DB_OPTION,
    build_orchestrator,
)
from framestate.core.scheduler import ComputationFailure
from framestate.monitor.renderer import StateRenderer

console = Console()


def state_cmd(
    live: bool = typer.Option(
        False, "--live", "-L", help="Redraw continuously (Ctrl+C to exit)."
    ),
    refresh_hz: float = typer.Option(1.0, "--refresh", "-r", help="Refresh rate in Hz."),
    log_db: Path = LOG_DB_OPTION,
    snapshot_db: Path = SNAPSHOT_DB_OPTION,
) -> None:
    """Show the current state: latest snapshot merged with the tail."""
    orchestrator = build_orchestrator(log_db, snapshot_db)
    renderer = StateRenderer(console=console)
    if live:
        renderer.render_live(orchestrator.reader, refresh_hz=refresh_hz)
    else:
        renderer.print_state(orchestrator.current_state())


def snapshot_cmd(
    history: bool = typer.Option(
        False, "--history", help="List retained snapshots, newest first."
    ),
    log_db: Path = LOG_DB_OPTION,
    snapshot_db: Path = SNAPSHOT_DB_OPTION,
) -> None:
    """Show the latest snapshot, or "none" if none was ever computed."""
    orchestrator = build_orchestrator(log_db, snapshot_db)
    renderer = StateRenderer(console=console)

    if not history:
        console.print(renderer.render_snapshot_summary(orchestrator.latest_snapshot()))
        return

    retained = orchestrator.store.history(orchestrator.config.snapshot_target)
    if not retained:
        console.print(renderer.render_snapshot_summary(None))
        return
    for i, snap in enumerate(retained):
        marker = "[green]latest[/green]" if i == 0 else "[dim]superseded[/dim]"
        console.print(
            f"{marker}  ordinal={snap.last_activity_ordinal}  "
            f"records={snap.total_records}  id={snap.snapshot_id}"
        )


def compute_cmd(
    log_db: Path = LOG_DB_OPTION,
    snapshot_db: Path = SNAPSHOT_DB_OPTION,
) -> None:
    """Compute and store a snapshot now."""
    orchestrator = build_orchestrator(log_db, snapshot_db)
    try:
        snapshot = orchestrator.compute_snapshot()
    except ComputationFailure as exc:
        console.print(f"[bold red]Computation failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if snapshot is None:
        console.print("[dim]No new activities; latest snapshot unchanged.[/dim]")
        return
    console.print(StateRenderer(console=console).render_snapshot_summary(snapshot))


def activities_cmd(
    since: int = typer.Option(0, "--since", "-s", help="Show ordinals strictly after this."),
    limit: int = typer.Option(50, "--limit", "-n", help="Page size."),
    log_db: Path = LOG_DB_OPTION,
    snapshot_db: Path = SNAPSHOT_DB_OPTION,
) -> None:
    """List activities after an ordinal, one page at a time."""
    orchestrator = build_orchestrator(log_db, snapshot_db)
    page = orchestrator.activities_since(since, limit=limit)
    if not page.activities:
        console.print(f"[dim]No activities after ordinal {since}.[/dim]")
        return
    console.print(StateRenderer(console=console).render_activities(page))
    if page.next_cursor is not None:
        console.print(f"[dim]Continue with --since {page.next_cursor}[/dim]")


def verify_cmd(
    log_db: Path = LOG_DB_OPTION,
    snapshot_db: Path = SNAPSHOT_DB_OPTION,
) -> None:
    """Check that snapshot + tail equals a full replay of the log."""
    orchestrator = build_orchestrator(log_db, snapshot_db)
    if orchestrator.verify():
        console.print("[green]Merged state matches full replay.[/green]")
    else:
        console.print("[bold red]Merged state DIVERGES from full replay![/bold red]")
        raise typer.Exit(code=1)
