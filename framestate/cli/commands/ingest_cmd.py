"""``framestate ingest`` and ``framestate end-session``.

``ingest`` appends one activity (or a JSON file of them) to the log.
``end-session`` delivers the beacon signal and, since a CLI process has
no background worker, processes the resulting trigger in-line.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path

import typer
from rich.console import Console

from framestate.cli.commands._shared import (
    LOG_DB_OPTION,
    SNAPSHOT_DB_OPTION,
    build_orchestrator,
)
from framestate.core.ingestion import ActivityValidationError

console = Console()


def ingest_cmd(
    agent: str = typer.Option("cli", "--agent", "-a", help="Agent identity."),
    operator: str = typer.Option(None, "--operator", "-o", help="INS, ALT or NUL."),
    frame: str = typer.Option(None, "--frame", "-f", help="Frame (collection) name."),
    target: str = typer.Option(None, "--target", "-t", help="Record id."),
    payload: str = typer.Option("{}", "--payload", "-p", help="Operator payload as JSON."),
    activity_uuid: str = typer.Option(
        None, "--uuid", help="Idempotency key. Generated when omitted."
    ),
    from_file: Path = typer.Option(
        None, "--file", help="JSON file holding one request object or a list of them."
    ),
    log_db: Path = LOG_DB_OPTION,
    snapshot_db: Path = SNAPSHOT_DB_OPTION,
) -> None:
    """Validate and append activities to the log."""
    if from_file is not None:
        try:
            loaded = json.loads(from_file.read_text(encoding="utf-8"))
        except OSError as exc:
            console.print(f"[bold red]Cannot read --file:[/bold red] {exc}")
            raise typer.Exit(code=2)
        except json.JSONDecodeError as exc:
            console.print(f"[bold red]Invalid --file JSON:[/bold red] {exc}")
            raise typer.Exit(code=2)
        requests = loaded if isinstance(loaded, list) else [loaded]
    else:
        if not (operator and frame and target):
            console.print("[bold red]--operator, --frame and --target are required[/bold red]")
            raise typer.Exit(code=2)
        try:
            parsed_payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            console.print(f"[bold red]Invalid --payload JSON:[/bold red] {exc}")
            raise typer.Exit(code=2)
        requests = [{
            "agent": agent,
            "uuid": activity_uuid or str(uuid.uuid4()),
            "operator": operator.upper(),
            "frame": frame,
            "target": target,
            "payload": parsed_payload,
        }]

    orchestrator = build_orchestrator(log_db, snapshot_db)
    failed = 0
    try:
        for request in requests:
            try:
                result = orchestrator.ingest(request)
            except ActivityValidationError as exc:
                failed += 1
                console.print(f"[bold red]Rejected:[/bold red] {exc}")
                continue
            activity = result.activity
            tag = "[yellow]duplicate[/yellow]" if result.duplicate else "[green]stored[/green]"
            console.print(
                f"{tag} ordinal={activity.ordinal} {activity.operator.value} "
                f"{activity.frame}/{activity.target} uuid={activity.uuid}"
            )
    finally:
        orchestrator.shutdown()

    if failed:
        raise typer.Exit(code=1)


def end_session_cmd(
    agent: str = typer.Argument(..., help="Agent whose session ended."),
    last_ordinal: int = typer.Option(
        None, "--last-ordinal", help="Last ordinal the client saw."
    ),
    log_db: Path = LOG_DB_OPTION,
    snapshot_db: Path = SNAPSHOT_DB_OPTION,
) -> None:
    """Signal a session end and compute the triggered snapshot."""
    orchestrator = build_orchestrator(log_db, snapshot_db)
    orchestrator.end_session(agent, last_ordinal)
    snapshot = orchestrator.scheduler.process_pending()
    stats = orchestrator.scheduler.stats()

    if snapshot is not None:
        console.print(
            f"[green]Snapshot stored[/green] at ordinal {snapshot.last_activity_ordinal}"
        )
    elif stats.failures:
        console.print("[bold red]Snapshot computation failed; see log output.[/bold red]")
        raise typer.Exit(code=1)
    else:
        console.print("[dim]No new activities; latest snapshot unchanged.[/dim]")
