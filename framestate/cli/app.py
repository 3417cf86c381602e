"""Main Typer application — imports and registers all CLI commands.

Entry point: ``framestate`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from framestate.cli.commands.ingest_cmd import end_session_cmd, ingest_cmd
from framestate.cli.commands.state_cmd import (
    activities_cmd,
    compute_cmd,
    snapshot_cmd,
    state_cmd,
    verify_cmd,
)
from framestate.config import config

app = typer.Typer(
    name="framestate",
    help="Framestate: activity log, snapshots and current-state reads.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def configure_logging(level: str) -> None:
    """Route all ``framestate.*`` loggers through Rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        config.log_level, "--log-level", help="Logging level (DEBUG, INFO, ...)."
    ),
) -> None:
    """Framestate command-line interface."""
    configure_logging(log_level)


# Register subcommands
app.command(name="ingest", help="Validate and append activities.")(ingest_cmd)
app.command(name="end-session", help="Signal a session end and snapshot.")(end_session_cmd)
app.command(name="state", help="Show current state (snapshot + tail).")(state_cmd)
app.command(name="snapshot", help="Show the latest snapshot.")(snapshot_cmd)
app.command(name="compute", help="Compute and store a snapshot now.")(compute_cmd)
app.command(name="activities", help="List activities after an ordinal.")(activities_cmd)
app.command(name="verify", help="Compare merged state with a full replay.")(verify_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
