"""Runtime configuration — env-driven via pydantic-settings.

Reads from a .env file and FRAMESTATE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StateConfig(BaseSettings):
    """Configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export FRAMESTATE_LOG_LEVEL=DEBUG
        export FRAMESTATE_ACTIVITY_LOG_PATH=/data/activities.db
        export FRAMESTATE_INACTIVITY_TIMEOUT_SECONDS=60

    Or via .env file::

        FRAMESTATE_SNAPSHOT_RETENTION=25
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FRAMESTATE_",
        env_file_encoding="utf-8",
    )

    # Logging
    log_level: str = "INFO"

    # Storage paths
    activity_log_path: Path = Path(".framestate/activities.db")
    snapshot_store_path: Path = Path(".framestate/snapshots.db")

    # Snapshotting
    snapshot_target: str = "all"
    inactivity_timeout_seconds: float = Field(default=300.0, gt=0)
    snapshot_retention: int = Field(default=10, ge=0)  # superseded snapshots kept per target

    # Range reads
    page_size: int = Field(default=500, gt=0)


# Module-level singleton — import as `from framestate.config import config`
config = StateConfig()
