"""Deterministic replay engine — activities in, per-frame records out.

Replay is a pure function of its input slice (plus an optional seed
snapshot): the same ordinal-ordered activities always yield the same
frames, the same record order and the same ``data_hash``.  The only
wall-clock value anywhere in the output is ``Snapshot.computed_at``.

The Snapshot Scheduler and the Read Coordinator both go through
``ReplayEngine.replay()`` so the merged read path and the stored
snapshots can never drift apart.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, assert_never

from pydantic import BaseModel, ConfigDict, ValidationError

from framestate.core.hasher import compute_data_hash
from framestate.models.activity import (
    Activity,
    AlterMutation,
    InsertMutation,
    NullifyMutation,
)
from framestate.models.snapshot import (
    DEFAULT_TARGET,
    AnomalyKind,
    Record,
    ReplayAnomaly,
    Snapshot,
    SnapshotPayload,
)

logger = logging.getLogger(__name__)

# frame -> target id -> {fields, creation_ordinal, created_at, updated_at}
_Frames = dict[str, dict[str, dict[str, Any]]]


class ReplayOrderError(ValueError):
    """Raised when the input slice is not strictly ascending by ordinal."""


class ReplayResult(BaseModel):
    """Materialized outcome of one replay pass."""

    model_config = ConfigDict(frozen=True)

    data: dict[str, list[Record]] = {}
    record_counts: dict[str, int] = {}
    last_activity_ordinal: int = 0
    processed: int = 0
    anomalies: list[ReplayAnomaly] = []
    data_hash: str = ""


class ReplayEngine:
    """Replays ordinal-ordered activities into frame record collections.

    Parameters
    ----------
    target:
        Snapshot target this engine materializes.  Only ``"all"`` is
        served today.
    """

    def __init__(self, target: str = DEFAULT_TARGET) -> None:
        self._target = target

    @property
    def target(self) -> str:
        return self._target

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def replay(
        self,
        activities: Iterable[Activity],
        seed: Snapshot | None = None,
    ) -> ReplayResult:
        """Apply ``activities`` on top of ``seed`` (or an empty state).

        Parameters
        ----------
        activities:
            Activities sorted ascending by global ordinal, all strictly
            greater than ``seed.last_activity_ordinal``.
        seed:
            Snapshot whose records form the starting accumulator.

        Raises
        ------
        ReplayOrderError
            If an activity's ordinal does not advance past the previous one.
        """
        frames = self._seed_frames(seed)
        last_ordinal = seed.last_activity_ordinal if seed is not None else 0
        anomalies: list[ReplayAnomaly] = []
        processed = 0

        for activity in activities:
            if activity.ordinal <= last_ordinal:
                raise ReplayOrderError(
                    f"Activity ordinal {activity.ordinal} does not advance "
                    f"past {last_ordinal}"
                )
            self._apply(frames, activity, anomalies)
            last_ordinal = activity.ordinal
            processed += 1

        data = self._materialize(frames)
        return ReplayResult(
            data=data,
            record_counts={frame: len(records) for frame, records in data.items()},
            last_activity_ordinal=last_ordinal,
            processed=processed,
            anomalies=anomalies,
            data_hash=compute_data_hash(data),
        )

    def compute_snapshot(
        self,
        activities: Iterable[Activity],
        base: Snapshot | None = None,
    ) -> tuple[Snapshot | None, ReplayResult]:
        """Build the next snapshot from ``base`` plus ``activities``.

        An empty range produces no snapshot: the first element of the
        returned tuple is ``None`` and nothing should be stored.
        """
        result = self.replay(activities, seed=base)
        if result.processed == 0:
            return None, result

        snapshot = Snapshot(
            target=self._target,
            payload=SnapshotPayload(data=result.data),
            record_counts=result.record_counts,
            computed_at=datetime.now(timezone.utc),
            last_activity_ordinal=result.last_activity_ordinal,
            data_hash=result.data_hash,
        )
        return snapshot, result

    # ------------------------------------------------------------------
    # Replay internals
    # ------------------------------------------------------------------

    @staticmethod
    def _seed_frames(seed: Snapshot | None) -> _Frames:
        frames: _Frames = {}
        if seed is None:
            return frames
        for frame, records in seed.payload.data.items():
            frames[frame] = {
                record.id: {
                    "fields": dict(record.fields),
                    "creation_ordinal": record.creation_ordinal,
                    "created_at": record.created_at,
                    "updated_at": record.updated_at,
                }
                for record in records
            }
        return frames

    def _apply(
        self,
        frames: _Frames,
        activity: Activity,
        anomalies: list[ReplayAnomaly],
    ) -> None:
        # Any activity makes its frame visible, even a rejected one
        records = frames.setdefault(activity.frame, {})

        try:
            mutation = activity.mutation()
        except ValidationError as exc:
            self._record_anomaly(
                anomalies,
                AnomalyKind.MALFORMED_ACTIVITY,
                activity,
                f"{activity.operator.value} payload invalid ({exc.error_count()} error(s))",
            )
            return

        if isinstance(mutation, InsertMutation):
            if mutation.id is not None and mutation.id != activity.target:
                self._record_anomaly(
                    anomalies,
                    AnomalyKind.MALFORMED_ACTIVITY,
                    activity,
                    f"INS payload id {mutation.id!r} does not match target",
                )
                return
            if activity.target in records:
                self._record_anomaly(
                    anomalies,
                    AnomalyKind.DUPLICATE_INSERT,
                    activity,
                    "INS for live record; last insert wins",
                )
            records[activity.target] = {
                "fields": dict(mutation.fields),
                "creation_ordinal": activity.ordinal,
                "created_at": activity.created_at,
                "updated_at": None,
            }
        elif isinstance(mutation, AlterMutation):
            record = records.get(activity.target)
            if record is None:
                self._record_anomaly(
                    anomalies,
                    AnomalyKind.ORPHAN_MUTATION,
                    activity,
                    f"ALT {mutation.field!r} on absent record",
                )
                return
            record["fields"][mutation.field] = mutation.new_value
            record["updated_at"] = activity.created_at
        elif isinstance(mutation, NullifyMutation):
            if records.pop(activity.target, None) is None:
                self._record_anomaly(
                    anomalies,
                    AnomalyKind.ORPHAN_MUTATION,
                    activity,
                    "NUL on absent record",
                )
        else:
            assert_never(mutation)

    @staticmethod
    def _materialize(frames: _Frames) -> dict[str, list[Record]]:
        """Frames in name order, records in creation-ordinal order."""
        data: dict[str, list[Record]] = {}
        for frame in sorted(frames):
            ordered = sorted(
                frames[frame].items(),
                key=lambda item: item[1]["creation_ordinal"],
            )
            data[frame] = [
                Record(
                    id=target,
                    fields=slot["fields"],
                    creation_ordinal=slot["creation_ordinal"],
                    created_at=slot["created_at"],
                    updated_at=slot["updated_at"],
                )
                for target, slot in ordered
            ]
        return data

    @staticmethod
    def _record_anomaly(
        anomalies: list[ReplayAnomaly],
        kind: AnomalyKind,
        activity: Activity,
        detail: str,
    ) -> None:
        anomaly = ReplayAnomaly(
            kind=kind,
            ordinal=activity.ordinal,
            frame=activity.frame,
            target=activity.target,
            detail=detail,
        )
        anomalies.append(anomaly)
        logger.warning(
            "Replay anomaly %s at ordinal %d (%s/%s): %s",
            kind.value,
            activity.ordinal,
            activity.frame,
            activity.target,
            detail,
        )
