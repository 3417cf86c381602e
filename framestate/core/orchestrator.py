"""Orchestrator — wires the Framestate components from one configuration.

The Orchestrator owns the ActivityLog, SnapshotStore, ReplayEngine,
SnapshotScheduler, SessionTracker, Ingestor and ReadCoordinator, and
exposes the external interface: ingestion, session signals and the
latest-state queries.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from framestate.config import StateConfig
from framestate.core.activity_log import ActivityLog
from framestate.core.ingestion import IngestResult, Ingestor
from framestate.core.read_coordinator import ReadCoordinator
from framestate.core.replay import ReplayEngine
from framestate.core.scheduler import SnapshotScheduler, manual_trigger
from framestate.core.session_tracker import SessionTracker, TimerFactory
from framestate.core.snapshot_store import SnapshotStore
from framestate.models.activity import ActivityPage, IngestRequest
from framestate.models.snapshot import CurrentState, Snapshot

logger = logging.getLogger(__name__)


class Orchestrator:
    """Central coordinator for activity ingestion and snapshot state.

    Parameters
    ----------
    config:
        Runtime configuration. Uses environment defaults if not provided.
    timer_factory:
        Deadline factory for the Session Tracker (tests inject fakes).
    """

    def __init__(
        self,
        config: StateConfig | None = None,
        *,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self.config = config or StateConfig()

        # Core subsystems
        self.log = ActivityLog(
            self.config.activity_log_path, page_size=self.config.page_size
        )
        self.store = SnapshotStore(
            self.config.snapshot_store_path, retention=self.config.snapshot_retention
        )
        self.engine = ReplayEngine(self.config.snapshot_target)
        self.scheduler = SnapshotScheduler(self.log, self.store, self.engine)
        self.tracker = SessionTracker(
            self.scheduler,
            inactivity_timeout=self.config.inactivity_timeout_seconds,
            timer_factory=timer_factory,
        )
        self.ingestor = Ingestor(self.log, self.tracker)
        self.reader = ReadCoordinator(self.log, self.store, self.engine)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background snapshot worker."""
        self.scheduler.start()

    def shutdown(self) -> None:
        """Drop pending deadlines and stop the worker after queued triggers."""
        dropped = self.tracker.close()
        if dropped:
            logger.info("Dropped %d open session(s) at shutdown", len(dropped))
        self.scheduler.stop()

    # ------------------------------------------------------------------
    # Ingestion and signals
    # ------------------------------------------------------------------

    def ingest(self, request: IngestRequest | Mapping[str, Any] | str | bytes) -> IngestResult:
        """Validate and append one activity.  Idempotent on ``uuid``."""
        return self.ingestor.ingest(request)

    def end_session(self, agent: str, last_ordinal: int | None = None) -> None:
        """Beacon signal: the agent's client is going away."""
        self.tracker.end_session(agent, last_ordinal)

    def request_snapshot(self) -> None:
        """Queue a manual snapshot trigger."""
        self.scheduler.request(manual_trigger())

    def compute_snapshot(self) -> Snapshot | None:
        """Compute and store a snapshot now, serialized with the worker."""
        return self.scheduler.compute_now()

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def latest_snapshot(self) -> Snapshot | None:
        """The latest snapshot for the configured target, or None."""
        return self.store.latest(self.config.snapshot_target)

    def activities_since(
        self, ordinal: int, *, limit: int | None = None
    ) -> ActivityPage:
        """Activities with ordinal strictly greater than ``ordinal``."""
        return self.log.read_since(ordinal, limit=limit)

    def current_state(self) -> CurrentState:
        """Latest snapshot merged with the activity tail."""
        return self.reader.get_current_state()

    def verify(self) -> bool:
        """Whether the merged read path equals a full replay."""
        return self.reader.verify()
