"""Ingestion — validates activity requests and appends them to the log.

Every request is:
1. Validated against ``IngestRequest`` and its operator's payload model
2. Appended to the Activity Log (ordinal + created_at assigned there)
3. Reported to the Session Tracker as ``record_activity``

A resubmitted uuid returns the originally stored activity; ordinals do not
advance and the tracker is not notified again.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from framestate.core.activity_log import ActivityLog, DuplicateActivityError
from framestate.core.session_tracker import SessionTracker
from framestate.models.activity import (
    Activity,
    IngestRequest,
    InsertMutation,
    parse_mutation,
)

logger = logging.getLogger(__name__)


class ActivityValidationError(ValueError):
    """Raised when an activity request is malformed.  Nothing is stored."""


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a JSON number")


class IngestResult(BaseModel):
    """Outcome of one ingestion call."""

    model_config = ConfigDict(frozen=True)

    activity: Activity
    duplicate: bool = False


class Ingestor:
    """Front door of the Activity Log.

    Parameters
    ----------
    log:
        The Activity Log to append to.
    tracker:
        Notified once per newly stored activity.  Optional so the log can
        be filled without scheduling snapshots (imports, tests).
    """

    def __init__(self, log: ActivityLog, tracker: SessionTracker | None = None) -> None:
        self._log = log
        self._tracker = tracker

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate(raw: IngestRequest | Mapping[str, Any] | str | bytes) -> IngestRequest:
        """Deserialize and validate a request, including its payload shape."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        if isinstance(raw, str):
            try:
                raw = json.loads(raw, parse_constant=_reject_constant)
            except ValueError as exc:
                raise ActivityValidationError(f"Invalid JSON: {exc}") from exc

        if isinstance(raw, IngestRequest):
            request = raw
        elif isinstance(raw, Mapping):
            try:
                request = IngestRequest.model_validate(dict(raw))
            except ValidationError as exc:
                raise ActivityValidationError(
                    f"Activity validation failed: {exc}"
                ) from exc
        else:
            raise ActivityValidationError(
                f"Activity must be a JSON object, got {type(raw).__name__}"
            )

        try:
            mutation = parse_mutation(request.operator, request.payload)
        except ValidationError as exc:
            raise ActivityValidationError(
                f"{request.operator.value} payload invalid: {exc}"
            ) from exc

        if isinstance(mutation, InsertMutation) and mutation.id not in (None, request.target):
            raise ActivityValidationError(
                f"INS payload id {mutation.id!r} does not match target {request.target!r}"
            )
        return request

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def ingest(self, raw: IngestRequest | Mapping[str, Any] | str | bytes) -> IngestResult:
        """Validate, append and report one activity.

        Raises
        ------
        ActivityValidationError
            If the request or its payload is malformed.
        """
        request = self.validate(raw)
        try:
            activity = self._log.append(request)
        except DuplicateActivityError as exc:
            logger.info(
                "Duplicate activity uuid %s; returning ordinal %d",
                request.uuid,
                exc.existing.ordinal,
            )
            return IngestResult(activity=exc.existing, duplicate=True)

        if self._tracker is not None:
            self._tracker.record_activity(
                activity.agent, activity.ordinal, activity.created_at
            )
        return IngestResult(activity=activity)
