"""Snapshot models — full-state materializations at an ordinal boundary.

A Snapshot is a PROJECTION of the Activity Log up to
``last_activity_ordinal``.  It is an optimization artifact: always
rebuildable from the log, never a source of truth on its own.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TARGET = "all"


class Record(BaseModel):
    """A materialized domain record inside a frame."""

    model_config = ConfigDict(frozen=True)

    id: str
    fields: dict[str, Any] = {}
    creation_ordinal: int
    created_at: datetime
    updated_at: datetime | None = None


class SnapshotPayload(BaseModel):
    """Frame name -> records ordered by creation ordinal."""

    model_config = ConfigDict(frozen=True)

    data: dict[str, list[Record]] = {}


class Snapshot(BaseModel):
    """A computed, immutable materialization of every frame."""

    model_config = ConfigDict(frozen=True)

    snapshot_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    target: str = DEFAULT_TARGET
    payload: SnapshotPayload = SnapshotPayload()
    record_counts: dict[str, int] = {}
    computed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    last_activity_ordinal: int
    data_hash: str = ""  # SHA-256 of canonical payload.data

    @property
    def total_records(self) -> int:
        return sum(self.record_counts.values())


class AnomalyKind(str, Enum):
    """Record-level replay anomalies.  Absorbed, never raised."""

    ORPHAN_MUTATION = "orphan_mutation"
    DUPLICATE_INSERT = "duplicate_insert"
    MALFORMED_ACTIVITY = "malformed_activity"


class ReplayAnomaly(BaseModel):
    """One absorbed anomaly observed during replay."""

    model_config = ConfigDict(frozen=True)

    kind: AnomalyKind
    ordinal: int
    frame: str
    target: str
    detail: str = ""


class CurrentState(BaseModel):
    """Latest snapshot merged with the activity tail at read time.

    Never persisted — computed fresh on every read.
    """

    model_config = ConfigDict(frozen=True)

    target: str = DEFAULT_TARGET
    data: dict[str, list[Record]] = {}
    record_counts: dict[str, int] = {}
    last_activity_ordinal: int = 0
    snapshot_ordinal: int | None = None  # None when no snapshot existed
    tail_count: int = 0
    anomaly_count: int = 0
    data_hash: str = ""
    read_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def frame(self, name: str) -> list[Record]:
        """Records of one frame, empty if the frame was never touched."""
        return self.data.get(name, [])
