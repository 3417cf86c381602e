"""Activity models — immutable, ordinal-stamped mutations.

An Activity is the unit of the append-only Activity Log.  It is:
- Ordinal-stamped (a strictly increasing integer assigned once at ingestion)
- Idempotent (the client-assigned ``uuid`` is unique across the log)
- Frame-scoped (it mutates exactly one record in one named collection)
- Operator-tagged (INS / ALT / NUL, each with its own payload shape)
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Operator(str, Enum):
    """Mutation kind carried by an activity."""

    INS = "INS"
    ALT = "ALT"
    NUL = "NUL"


# ---------------------------------------------------------------------------
# Operator payloads (tagged variant)
# ---------------------------------------------------------------------------


class InsertMutation(BaseModel):
    """INS payload: create a record from ``fields``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str | None = None
    fields: dict[str, Any]


class AlterMutation(BaseModel):
    """ALT payload: set one field.  ``old_value`` is advisory only."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    field: str = Field(min_length=1)
    old_value: Any = None
    new_value: Any


class NullifyMutation(BaseModel):
    """NUL payload: remove the record."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    reason: str | None = None
    snapshot_of_deleted: Any = None


Mutation = Union[InsertMutation, AlterMutation, NullifyMutation]

MUTATION_TYPE_MAP: dict[Operator, type[BaseModel]] = {
    Operator.INS: InsertMutation,
    Operator.ALT: AlterMutation,
    Operator.NUL: NullifyMutation,
}


def parse_mutation(operator: Operator, payload: dict[str, Any]) -> Mutation:
    """Validate ``payload`` against the model for ``operator``.

    Raises ``pydantic.ValidationError`` if the payload is malformed.
    """
    model_cls = MUTATION_TYPE_MAP[operator]
    return model_cls.model_validate(payload)  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Requests and stored activities
# ---------------------------------------------------------------------------


class IngestRequest(BaseModel):
    """What a client submits.  Ordinal, created_at and id are assigned later."""

    model_config = ConfigDict(frozen=True)

    agent: str = Field(min_length=1)
    uuid: str = Field(min_length=1)  # client-assigned idempotency key
    operator: Operator
    target: str = Field(min_length=1)
    frame: str = Field(min_length=1)
    payload: dict[str, Any] = {}

    @field_validator("payload")
    @classmethod
    def _payload_is_json(cls, value: dict[str, Any]) -> dict[str, Any]:
        # NaN and Infinity have no JSON form; stored snapshots would turn them into null
        _reject_non_finite(value, "payload")
        return value


def _reject_non_finite(value: Any, path: str) -> None:
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"{path} holds non-finite number {value!r}")
    if isinstance(value, dict):
        for key, item in value.items():
            _reject_non_finite(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _reject_non_finite(item, f"{path}[{index}]")


class Activity(BaseModel):
    """A single entry in the append-only Activity Log.

    Never mutated, never deleted.  Snapshots and the current state are
    projections of these entries.
    """

    model_config = ConfigDict(frozen=True)

    activity_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    ordinal: int = 0  # 0 until the log assigns one
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    agent: str
    uuid: str
    operator: Operator
    target: str
    frame: str
    payload: dict[str, Any] = {}

    def mutation(self) -> Mutation:
        """Return the typed payload variant for this activity's operator."""
        return parse_mutation(self.operator, self.payload)


class ActivityPage(BaseModel):
    """One page of a range read, with a continuation cursor."""

    model_config = ConfigDict(frozen=True)

    activities: list[Activity] = []
    next_cursor: int | None = None  # pass back as ``after`` to continue

    @property
    def last_ordinal(self) -> int | None:
        return self.activities[-1].ordinal if self.activities else None
