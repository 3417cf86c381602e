"""Framestate data models — all Pydantic v2, all frozen (immutable)."""

from framestate.models.activity import (
    MUTATION_TYPE_MAP,
    Activity,
    ActivityPage,
    AlterMutation,
    IngestRequest,
    InsertMutation,
    Mutation,
    NullifyMutation,
    Operator,
    parse_mutation,
)
from framestate.models.session import (
    SchedulerStats,
    SessionInfo,
    TriggerReason,
    TriggerSignal,
)
from framestate.models.snapshot import (
    DEFAULT_TARGET,
    AnomalyKind,
    CurrentState,
    Record,
    ReplayAnomaly,
    Snapshot,
    SnapshotPayload,
)

__all__ = [
    # activity
    "Operator",
    "InsertMutation",
    "AlterMutation",
    "NullifyMutation",
    "Mutation",
    "MUTATION_TYPE_MAP",
    "parse_mutation",
    "IngestRequest",
    "Activity",
    "ActivityPage",
    # snapshot
    "DEFAULT_TARGET",
    "Record",
    "SnapshotPayload",
    "Snapshot",
    "AnomalyKind",
    "ReplayAnomaly",
    "CurrentState",
    # session
    "TriggerReason",
    "TriggerSignal",
    "SessionInfo",
    "SchedulerStats",
]
