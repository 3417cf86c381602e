"""Session and trigger models for the session-driven scheduler."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TriggerReason(str, Enum):
    """Why a snapshot computation was requested."""

    SESSION_END = "session_end"
    INACTIVITY_TIMEOUT = "inactivity_timeout"
    MANUAL = "manual"


class TriggerSignal(BaseModel):
    """A message sent into the scheduler's coalescing queue."""

    model_config = ConfigDict(frozen=True)

    reason: TriggerReason
    agent: str | None = None
    last_ordinal: int | None = None
    raised_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class SessionInfo(BaseModel):
    """Read-only view of one tracked session.

    The live session (with its timer handle) is private to the tracker.
    """

    model_config = ConfigDict(frozen=True)

    agent: str
    last_ordinal_seen: int
    last_activity_time: datetime
    generation: int


class SchedulerStats(BaseModel):
    """Counters surfaced by the snapshot scheduler."""

    model_config = ConfigDict(frozen=True)

    triggers_received: int = 0
    runs_started: int = 0
    snapshots_stored: int = 0
    empty_ranges_skipped: int = 0
    stale_writes_discarded: int = 0
    failures: int = 0
    anomalies: dict[str, int] = {}
