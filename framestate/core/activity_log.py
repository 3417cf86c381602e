"""Append-only Activity Log backed by SQLite.

The Activity Log is the source of truth.  Snapshots and the current state
are projections of this log — they never compute truth on their own.

Design:
- Append-only: only ``append()`` writes; no update, no delete.
- Ordinal = SQLite AUTOINCREMENT key, assigned under one sequencer lock,
  so ordinals are unique and strictly increasing.
- ``uuid`` UNIQUE constraint makes ingestion idempotent.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

from framestate.models.activity import Activity, ActivityPage, IngestRequest

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LOG = """
CREATE TABLE IF NOT EXISTS activity_log (
    ordinal       INTEGER PRIMARY KEY AUTOINCREMENT,
    activity_id   TEXT NOT NULL UNIQUE,
    uuid          TEXT NOT NULL UNIQUE,
    created_at    TEXT NOT NULL,
    agent         TEXT NOT NULL,
    operator      TEXT NOT NULL,
    target        TEXT NOT NULL,
    frame         TEXT NOT NULL,
    payload_json  TEXT NOT NULL DEFAULT '{}'
);
"""

_CREATE_IDX_FRAME = """
CREATE INDEX IF NOT EXISTS idx_frame_target ON activity_log(frame, target, ordinal);
"""

_COLUMNS = (
    "ordinal, activity_id, uuid, created_at, agent, operator, target, frame, payload_json"
)


class DuplicateActivityError(RuntimeError):
    """Raised when an activity with an already-seen uuid is appended.

    Carries the originally stored activity so callers can answer
    idempotently.
    """

    def __init__(self, existing: Activity) -> None:
        super().__init__(
            f"Activity uuid {existing.uuid!r} already stored at ordinal "
            f"{existing.ordinal}"
        )
        self.existing = existing


class ActivityLog:
    """Append-only, ordinal-sequenced Activity Log.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    page_size:
        Default page size for range reads.
    """

    def __init__(self, db_path: Path, *, page_size: int = 500) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._page_size = page_size
        # The single serialization point for ordinal assignment
        self._sequencer = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LOG)
            conn.execute(_CREATE_IDX_FRAME)
            conn.commit()

    @property
    def page_size(self) -> int:
        return self._page_size

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, request: IngestRequest) -> Activity:
        """Assign an ordinal and created_at, then persist the activity.

        This is the ONLY write method. There is no update or delete.

        Raises
        ------
        DuplicateActivityError
            If ``request.uuid`` was already stored.  Ordinals do not advance.
        """
        with self._sequencer:
            existing = self.get_by_uuid(request.uuid)
            if existing is not None:
                raise DuplicateActivityError(existing)

            draft = Activity(
                created_at=datetime.now(timezone.utc),
                agent=request.agent,
                uuid=request.uuid,
                operator=request.operator,
                target=request.target,
                frame=request.frame,
                payload=request.payload,
            )
            try:
                ordinal = self._insert(draft)
            except sqlite3.IntegrityError:
                # Another process stored the same uuid after our lookup
                existing = self.get_by_uuid(request.uuid)
                if existing is None:
                    raise
                raise DuplicateActivityError(existing) from None

        stored = draft.model_copy(update={"ordinal": ordinal})
        logger.debug(
            "Appended activity %s %s/%s at ordinal %d",
            stored.operator.value,
            stored.frame,
            stored.target,
            ordinal,
        )
        return stored

    def _insert(self, activity: Activity) -> int:
        """Insert an activity and return its assigned ordinal."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO activity_log
                    (activity_id, uuid, created_at, agent, operator,
                     target, frame, payload_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    activity.activity_id,
                    activity.uuid,
                    activity.created_at.isoformat(),
                    activity.agent,
                    activity.operator.value,
                    activity.target,
                    activity.frame,
                    json.dumps(activity.payload),
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_by_uuid(self, activity_uuid: str) -> Activity | None:
        """Return the stored activity for a client uuid, or None."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM activity_log WHERE uuid = ?",
                (activity_uuid,),
            ).fetchone()
        return self._row_to_activity(row) if row else None

    def max_ordinal(self) -> int:
        """Highest assigned ordinal, 0 for an empty log."""
        with self._connect() as conn:
            row = conn.execute("SELECT MAX(ordinal) FROM activity_log").fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    def count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM activity_log").fetchone()
        return int(row[0]) if row else 0

    def read_since(
        self,
        after: int = 0,
        *,
        limit: int | None = None,
        upto: int | None = None,
    ) -> ActivityPage:
        """Return activities with ``after < ordinal [<= upto]``, ascending.

        When more activities remain beyond this page, ``next_cursor`` holds
        the ordinal to pass back as ``after``.
        """
        limit = limit or self._page_size
        query = f"SELECT {_COLUMNS} FROM activity_log WHERE ordinal > ?"
        params: list[int] = [after]
        if upto is not None:
            query += " AND ordinal <= ?"
            params.append(upto)
        query += " ORDER BY ordinal ASC LIMIT ?"
        # Fetch one extra row to learn whether another page exists
        params.append(limit + 1)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        activities = [self._row_to_activity(row) for row in rows[:limit]]
        next_cursor = activities[-1].ordinal if len(rows) > limit else None
        return ActivityPage(activities=activities, next_cursor=next_cursor)

    def iter_since(
        self,
        after: int = 0,
        *,
        upto: int | None = None,
        page_size: int | None = None,
    ) -> Iterator[Activity]:
        """Yield every activity with ``after < ordinal [<= upto]``, page by page."""
        cursor: int | None = after
        while cursor is not None:
            page = self.read_since(cursor, limit=page_size, upto=upto)
            yield from page.activities
            cursor = page.next_cursor

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_activity(row: tuple) -> Activity:
        """Convert a SQLite row tuple to an Activity."""
        (
            ordinal,
            activity_id,
            activity_uuid,
            created_at,
            agent,
            operator,
            target,
            frame,
            payload_json,
        ) = row
        return Activity(
            activity_id=activity_id,
            ordinal=ordinal,
            created_at=created_at,
            agent=agent,
            uuid=activity_uuid,
            operator=operator,
            target=target,
            frame=frame,
            payload=json.loads(payload_json),
        )
