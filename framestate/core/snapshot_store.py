"""Snapshot Store — latest-per-target pointer guarded by an ordinal CAS.

The "latest snapshot" pointer is the only shared mutable state in the
system.  Every write goes through ``compare_and_swap()``: a candidate wins
only if it covers strictly more of the Activity Log than the current
latest.  A slower computation finishing late can therefore never
overwrite a more advanced state.

Superseded snapshots are retained for audit up to a bounded count and are
never served.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path

from framestate.models.snapshot import DEFAULT_TARGET, Snapshot, SnapshotPayload

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_SNAPSHOTS = """
CREATE TABLE IF NOT EXISTS snapshots (
    id                     INTEGER PRIMARY KEY AUTOINCREMENT,
    snapshot_id            TEXT NOT NULL UNIQUE,
    target                 TEXT NOT NULL,
    last_activity_ordinal  INTEGER NOT NULL,
    computed_at            TEXT NOT NULL,
    record_counts_json     TEXT NOT NULL DEFAULT '{}',
    payload_json           TEXT NOT NULL,
    data_hash              TEXT NOT NULL DEFAULT '',
    is_latest              INTEGER NOT NULL DEFAULT 0
);
"""

_CREATE_IDX_TARGET = """
CREATE INDEX IF NOT EXISTS idx_target_ordinal
    ON snapshots(target, last_activity_ordinal);
"""

_COLUMNS = (
    "snapshot_id, target, last_activity_ordinal, computed_at, "
    "record_counts_json, payload_json, data_hash"
)


class StaleSnapshotWrite(RuntimeError):
    """Raised when a candidate does not advance past the current latest."""

    def __init__(self, candidate_ordinal: int, latest_ordinal: int) -> None:
        super().__init__(
            f"Candidate at ordinal {candidate_ordinal} does not advance past "
            f"latest at ordinal {latest_ordinal}"
        )
        self.candidate_ordinal = candidate_ordinal
        self.latest_ordinal = latest_ordinal


class SnapshotStore:
    """SQLite-backed snapshot history with one latest row per target.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    retention:
        Superseded snapshots to keep per target.  ``0`` keeps only the
        latest; ``None`` keeps everything.
    """

    def __init__(self, db_path: Path, *, retention: int | None = 10) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._retention = retention
        self._lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode: transactions are opened explicitly for the CAS
        conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False, isolation_level=None
        )
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_SNAPSHOTS)
            conn.execute(_CREATE_IDX_TARGET)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def compare_and_swap(self, candidate: Snapshot) -> Snapshot:
        """Make ``candidate`` the latest snapshot for its target.

        Raises
        ------
        StaleSnapshotWrite
            If a latest exists with ``last_activity_ordinal`` greater than
            or equal to the candidate's.  Nothing is written.
        """
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT last_activity_ordinal FROM snapshots "
                    "WHERE target = ? AND is_latest = 1",
                    (candidate.target,),
                ).fetchone()
                if row is not None and candidate.last_activity_ordinal <= row[0]:
                    conn.execute("ROLLBACK")
                    raise StaleSnapshotWrite(candidate.last_activity_ordinal, row[0])

                conn.execute(
                    "UPDATE snapshots SET is_latest = 0 "
                    "WHERE target = ? AND is_latest = 1",
                    (candidate.target,),
                )
                self._insert(conn, candidate)
                self._prune(conn, candidate.target)
                conn.execute("COMMIT")
            except sqlite3.Error:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        logger.info(
            "Stored snapshot %s for target %r at ordinal %d (%d records)",
            candidate.snapshot_id,
            candidate.target,
            candidate.last_activity_ordinal,
            candidate.total_records,
        )
        return candidate

    def store_snapshot(self, candidate: Snapshot) -> bool:
        """CAS that silently discards stale candidates.

        Returns True if the candidate became the latest snapshot.
        """
        try:
            self.compare_and_swap(candidate)
        except StaleSnapshotWrite as exc:
            logger.debug("Discarded stale snapshot %s: %s", candidate.snapshot_id, exc)
            return False
        return True

    @staticmethod
    def _insert(conn: sqlite3.Connection, snapshot: Snapshot) -> None:
        conn.execute(
            """
            INSERT INTO snapshots
                (snapshot_id, target, last_activity_ordinal, computed_at,
                 record_counts_json, payload_json, data_hash, is_latest)
            VALUES (?, ?, ?, ?, ?, ?, ?, 1)
            """,
            (
                snapshot.snapshot_id,
                snapshot.target,
                snapshot.last_activity_ordinal,
                snapshot.computed_at.isoformat(),
                json.dumps(snapshot.record_counts),
                snapshot.payload.model_dump_json(),
                snapshot.data_hash,
            ),
        )

    def _prune(self, conn: sqlite3.Connection, target: str) -> None:
        """Drop superseded snapshots beyond the retention bound."""
        if self._retention is None:
            return
        cursor = conn.execute(
            """
            DELETE FROM snapshots
            WHERE target = ? AND is_latest = 0 AND id NOT IN (
                SELECT id FROM snapshots
                WHERE target = ? AND is_latest = 0
                ORDER BY last_activity_ordinal DESC, id DESC
                LIMIT ?
            )
            """,
            (target, target, self._retention),
        )
        if cursor.rowcount:
            logger.debug(
                "Pruned %d superseded snapshot(s) for target %r",
                cursor.rowcount,
                target,
            )

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def latest(self, target: str = DEFAULT_TARGET) -> Snapshot | None:
        """Return the latest snapshot for a target, or None if none exists."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM snapshots WHERE target = ? AND is_latest = 1",
                (target,),
            ).fetchone()
        return self._row_to_snapshot(row) if row else None

    def latest_ordinal(self, target: str = DEFAULT_TARGET) -> int:
        """Ordinal covered by the latest snapshot, 0 if there is none."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT last_activity_ordinal FROM snapshots "
                "WHERE target = ? AND is_latest = 1",
                (target,),
            ).fetchone()
        return int(row[0]) if row else 0

    def history(self, target: str = DEFAULT_TARGET) -> list[Snapshot]:
        """All retained snapshots for a target, newest first (audit only)."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM snapshots WHERE target = ? "
                "ORDER BY last_activity_ordinal DESC, id DESC",
                (target,),
            ).fetchall()
        return [self._row_to_snapshot(row) for row in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_snapshot(row: tuple) -> Snapshot:
        """Convert a SQLite row tuple to a Snapshot."""
        (
            snapshot_id,
            target,
            last_activity_ordinal,
            computed_at,
            record_counts_json,
            payload_json,
            data_hash,
        ) = row
        return Snapshot(
            snapshot_id=snapshot_id,
            target=target,
            payload=SnapshotPayload.model_validate_json(payload_json),
            record_counts=json.loads(record_counts_json),
            computed_at=computed_at,
            last_activity_ordinal=last_activity_ordinal,
            data_hash=data_hash,
        )
