"""Snapshot Scheduler — coalescing trigger queue in front of one worker.

Trigger signals (session end, inactivity timeout, manual) are messages
put on a queue.  A single consumer drains the queue: every signal that is
waiting when it wakes up is folded into ONE computation covering the
range ``(latest snapshot ordinal, current max ordinal]``.  Signals that
arrive while a computation is in flight wait on the queue and are folded
into exactly one follow-up run.

At most one computation is ever in flight.  Correctness does not depend
on it (the Snapshot Store CAS resolves races); it bounds memory and
avoids duplicated replay work.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections import Counter

from framestate.core.activity_log import ActivityLog
from framestate.core.replay import ReplayEngine
from framestate.core.snapshot_store import SnapshotStore
from framestate.models.session import SchedulerStats, TriggerReason, TriggerSignal
from framestate.models.snapshot import Snapshot

logger = logging.getLogger(__name__)


class ComputationFailure(RuntimeError):
    """Raised when a snapshot computation faults before its CAS.

    The previously stored latest snapshot is left untouched; the next
    trigger retries from it.
    """


class SnapshotScheduler:
    """Coalesces trigger signals and runs snapshot computations serially.

    Parameters
    ----------
    log:
        The Activity Log to read ranges from.
    store:
        The Snapshot Store holding the latest pointer.
    engine:
        Replay engine; its ``target`` selects the snapshot target.
    """

    def __init__(
        self,
        log: ActivityLog,
        store: SnapshotStore,
        engine: ReplayEngine | None = None,
    ) -> None:
        self._log = log
        self._store = store
        self._engine = engine or ReplayEngine()
        self._queue: queue.Queue[TriggerSignal | None] = queue.Queue()
        self._run_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._stop_requested = False

        self._counters: Counter[str] = Counter()
        self._anomalies: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Worker lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        """Whether the background consumer thread is alive."""
        return self._worker is not None and self._worker.is_alive()

    @property
    def in_flight(self) -> bool:
        """Whether a computation is running right now."""
        return self._run_lock.locked()

    def start(self) -> None:
        """Start the single background consumer."""
        if self.running:
            if self._stop_requested:
                raise RuntimeError("Snapshot worker is still draining after stop()")
            return
        self._stop_requested = False
        self._worker = threading.Thread(
            target=self._worker_loop, name="framestate-snapshot-worker", daemon=True
        )
        self._worker.start()
        logger.info("Snapshot worker started for target %r", self._engine.target)

    def stop(self, timeout: float | None = None) -> None:
        """Drain queued triggers, then stop the consumer."""
        if not self.running:
            return
        assert self._worker is not None
        if not self._stop_requested:
            self._queue.put(None)
            self._stop_requested = True
        self._worker.join(timeout)
        if self._worker.is_alive():
            logger.warning("Snapshot worker still draining after %.1fs", timeout)
            return
        self._worker = None
        self._stop_requested = False
        logger.info("Snapshot worker stopped")

    def wait_idle(self) -> None:
        """Block until every queued trigger has been processed."""
        self._queue.join()

    # ------------------------------------------------------------------
    # Trigger intake
    # ------------------------------------------------------------------

    def request(self, signal: TriggerSignal) -> None:
        """Enqueue a trigger.  Never blocks on a running computation."""
        with self._stats_lock:
            self._counters["triggers_received"] += 1
        logger.debug(
            "Trigger %s (agent=%s, last_ordinal=%s)",
            signal.reason.value,
            signal.agent,
            signal.last_ordinal,
        )
        self._queue.put(signal)

    def process_pending(self) -> Snapshot | None:
        """Synchronously fold all queued triggers into at most one run.

        For use when no background worker is started.  Returns the stored
        snapshot, or None if nothing was stored.
        """
        if self.running:
            raise RuntimeError("process_pending() cannot be used while the worker runs")
        batch = self._drain_nowait()
        if not batch:
            return None
        try:
            return self._run_guarded()
        finally:
            for _ in batch:
                self._queue.task_done()

    def compute_now(self) -> Snapshot | None:
        """Run one computation immediately, bypassing the queue.

        Still serialized with the worker.  Raises ``ComputationFailure``.
        """
        with self._stats_lock:
            self._counters["triggers_received"] += 1
        return self.run_once()

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    def run_once(self) -> Snapshot | None:
        """Compute and store the next snapshot.

        Returns the stored snapshot, or None when the range was empty or
        the candidate lost the CAS.

        Raises
        ------
        ComputationFailure
            On any fault before the CAS completes.
        """
        with self._run_lock:
            with self._stats_lock:
                self._counters["runs_started"] += 1
            try:
                return self._compute_and_store()
            except Exception as exc:
                with self._stats_lock:
                    self._counters["failures"] += 1
                logger.exception("Snapshot computation failed; latest snapshot kept")
                raise ComputationFailure(str(exc)) from exc

    def _compute_and_store(self) -> Snapshot | None:
        target = self._engine.target
        base = self._store.latest(target)
        after = base.last_activity_ordinal if base is not None else 0
        upto = self._log.max_ordinal()

        if upto <= after:
            with self._stats_lock:
                self._counters["empty_ranges_skipped"] += 1
            logger.debug("No activities after ordinal %d; snapshot skipped", after)
            return None

        activities = self._log.iter_since(after, upto=upto)
        candidate, result = self._engine.compute_snapshot(activities, base)

        with self._stats_lock:
            self._anomalies.update(a.kind.value for a in result.anomalies)

        if candidate is None:
            with self._stats_lock:
                self._counters["empty_ranges_skipped"] += 1
            return None

        if not self._store.store_snapshot(candidate):
            with self._stats_lock:
                self._counters["stale_writes_discarded"] += 1
            return None

        with self._stats_lock:
            self._counters["snapshots_stored"] += 1
        logger.info(
            "Snapshot covers ordinals (%d, %d]: %d activities, %d anomalies",
            after,
            candidate.last_activity_ordinal,
            result.processed,
            len(result.anomalies),
        )
        return candidate

    def _run_guarded(self) -> Snapshot | None:
        try:
            return self.run_once()
        except ComputationFailure:
            # Already logged; the next trigger retries from the kept snapshot
            return None

    # ------------------------------------------------------------------
    # Consumer loop
    # ------------------------------------------------------------------

    def _drain_nowait(self) -> list[TriggerSignal | None]:
        batch: list[TriggerSignal | None] = []
        while True:
            try:
                batch.append(self._queue.get_nowait())
            except queue.Empty:
                return batch

    def _worker_loop(self) -> None:
        while True:
            first = self._queue.get()
            batch = [first, *self._drain_nowait()]
            signals = [s for s in batch if s is not None]
            try:
                if signals:
                    if len(signals) > 1:
                        logger.debug("Coalesced %d triggers into one run", len(signals))
                    self._run_guarded()
            finally:
                for _ in batch:
                    self._queue.task_done()
            if len(signals) != len(batch):
                return

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def stats(self) -> SchedulerStats:
        """Point-in-time copy of the scheduler counters."""
        with self._stats_lock:
            return SchedulerStats(
                triggers_received=self._counters["triggers_received"],
                runs_started=self._counters["runs_started"],
                snapshots_stored=self._counters["snapshots_stored"],
                empty_ranges_skipped=self._counters["empty_ranges_skipped"],
                stale_writes_discarded=self._counters["stale_writes_discarded"],
                failures=self._counters["failures"],
                anomalies=dict(self._anomalies),
            )


def manual_trigger() -> TriggerSignal:
    """A trigger raised by an operator rather than a session signal."""
    return TriggerSignal(reason=TriggerReason.MANUAL)
