"""Helpers shared by CLI commands."""

from __future__ import annotations

from pathlib import Path

import typer

from framestate.config import StateConfig
from framestate.core.orchestrator import Orchestrator

LOG_DB_OPTION = typer.Option(
    None, "--log-db", help="Path to the activity log SQLite database."
)
SNAPSHOT_DB_OPTION = typer.Option(
    None, "--snapshot-db", help="Path to the snapshot store SQLite database."
)


def build_orchestrator(log_db: Path | None, snapshot_db: Path | None) -> Orchestrator:
    """Orchestrator from FRAMESTATE_* settings with CLI path overrides."""
    overrides: dict[str, Path] = {}
    if log_db is not None:
        overrides["activity_log_path"] = log_db
    if snapshot_db is not None:
        overrides["snapshot_store_path"] = snapshot_db
    return Orchestrator(StateConfig(**overrides))
