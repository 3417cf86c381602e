"""Tests for the SnapshotScheduler — coalescing, single flight, failure handling."""

from __future__ import annotations

import threading

import pytest

from framestate.core.activity_log import ActivityLog
from framestate.core.replay import ReplayEngine
from framestate.core.scheduler import ComputationFailure, SnapshotScheduler, manual_trigger
from framestate.core.snapshot_store import SnapshotStore
from framestate.models.snapshot import Snapshot


class ExplodingEngine(ReplayEngine):
    def compute_snapshot(self, activities, base=None):
        raise RuntimeError("disk on fire")


class BlockingEngine(ReplayEngine):
    """Holds the first computation open until the test releases it."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def compute_snapshot(self, activities, base=None):
        self.calls += 1
        if self.calls == 1:
            self.entered.set()
            assert self.release.wait(timeout=5.0)
        return super().compute_snapshot(activities, base)


class RacingEngine(ReplayEngine):
    """Another writer stores a newer snapshot while this one computes."""

    def __init__(self, store: SnapshotStore) -> None:
        super().__init__()
        self._store = store

    def compute_snapshot(self, activities, base=None):
        result = super().compute_snapshot(activities, base)
        self._store.store_snapshot(Snapshot(last_activity_ordinal=100))
        return result


def _fill(log: ActivityLog, make_request, n: int) -> None:
    for i in range(n):
        log.append(make_request("INS", target=f"org_{i}", payload={"fields": {"i": i}}))


class TestCoalescing:
    def test_queued_triggers_fold_into_one_run(
        self, activity_log, snapshot_store, make_request
    ):
        _fill(activity_log, make_request, 5)
        scheduler = SnapshotScheduler(activity_log, snapshot_store)
        for _ in range(3):
            scheduler.request(manual_trigger())

        stored = scheduler.process_pending()

        assert stored is not None
        assert stored.last_activity_ordinal == 5
        stats = scheduler.stats()
        assert stats.triggers_received == 3
        assert stats.runs_started == 1
        assert stats.snapshots_stored == 1

    def test_nothing_queued_does_nothing(self, activity_log, snapshot_store):
        scheduler = SnapshotScheduler(activity_log, snapshot_store)
        assert scheduler.process_pending() is None
        assert scheduler.stats().runs_started == 0

    def test_empty_range_is_skipped(self, activity_log, snapshot_store, make_request):
        _fill(activity_log, make_request, 2)
        scheduler = SnapshotScheduler(activity_log, snapshot_store)
        scheduler.compute_now()

        assert scheduler.compute_now() is None
        assert scheduler.stats().empty_ranges_skipped == 1
        assert len(snapshot_store.history()) == 1

    def test_incremental_run_is_seeded_from_latest(
        self, activity_log, snapshot_store, make_request
    ):
        scheduler = SnapshotScheduler(activity_log, snapshot_store)
        _fill(activity_log, make_request, 3)
        scheduler.compute_now()
        activity_log.append(make_request("NUL", target="org_0"))
        activity_log.append(make_request("ALT", target="org_1", payload={"field": "i", "new_value": 9}))

        second = scheduler.compute_now()

        assert second is not None
        assert second.last_activity_ordinal == 5
        orgs = second.payload.data["organizations"]
        assert [(r.id, r.fields) for r in orgs] == [("org_1", {"i": 9}), ("org_2", {"i": 2})]

    def test_anomalies_are_counted(self, activity_log, snapshot_store, make_request):
        activity_log.append(make_request("NUL", target="ghost"))
        activity_log.append(make_request("ALT", target="ghost", payload={"field": "x"}))
        scheduler = SnapshotScheduler(activity_log, snapshot_store)
        scheduler.compute_now()
        assert scheduler.stats().anomalies == {
            "orphan_mutation": 1,
            "malformed_activity": 1,
        }


class TestFailures:
    def test_failure_keeps_previous_snapshot(self, activity_log, snapshot_store, make_request):
        _fill(activity_log, make_request, 2)
        SnapshotScheduler(activity_log, snapshot_store).compute_now()
        before = snapshot_store.latest()
        activity_log.append(make_request("NUL", target="org_0"))

        scheduler = SnapshotScheduler(activity_log, snapshot_store, ExplodingEngine())
        scheduler.request(manual_trigger())

        assert scheduler.process_pending() is None
        assert scheduler.stats().failures == 1
        assert snapshot_store.latest() == before

    def test_compute_now_raises(self, activity_log, snapshot_store, make_request):
        _fill(activity_log, make_request, 1)
        scheduler = SnapshotScheduler(activity_log, snapshot_store, ExplodingEngine())
        with pytest.raises(ComputationFailure, match="disk on fire"):
            scheduler.compute_now()

    def test_next_trigger_retries_after_failure(
        self, activity_log, snapshot_store, make_request
    ):
        _fill(activity_log, make_request, 2)
        broken = SnapshotScheduler(activity_log, snapshot_store, ExplodingEngine())
        with pytest.raises(ComputationFailure):
            broken.compute_now()

        healthy = SnapshotScheduler(activity_log, snapshot_store)
        stored = healthy.compute_now()
        assert stored is not None
        assert stored.last_activity_ordinal == 2

    def test_stale_candidate_is_discarded(self, activity_log, snapshot_store, make_request):
        _fill(activity_log, make_request, 3)
        scheduler = SnapshotScheduler(
            activity_log, snapshot_store, RacingEngine(snapshot_store)
        )

        assert scheduler.compute_now() is None
        assert scheduler.stats().stale_writes_discarded == 1
        assert snapshot_store.latest_ordinal() == 100


class TestWorker:
    def test_triggers_during_flight_cause_one_follow_up(
        self, activity_log, snapshot_store, make_request
    ):
        engine = BlockingEngine()
        scheduler = SnapshotScheduler(activity_log, snapshot_store, engine)
        scheduler.start()
        try:
            _fill(activity_log, make_request, 2)
            scheduler.request(manual_trigger())
            assert engine.entered.wait(timeout=5.0)
            assert scheduler.in_flight

            activity_log.append(make_request("NUL", target="org_0"))
            for _ in range(3):
                scheduler.request(manual_trigger())
            engine.release.set()
            scheduler.wait_idle()
        finally:
            scheduler.stop(timeout=5.0)

        stats = scheduler.stats()
        assert stats.triggers_received == 4
        assert stats.runs_started == 2
        assert stats.snapshots_stored == 2
        assert snapshot_store.latest_ordinal() == 3

    def test_process_pending_refused_while_worker_runs(self, activity_log, snapshot_store):
        scheduler = SnapshotScheduler(activity_log, snapshot_store)
        scheduler.start()
        try:
            with pytest.raises(RuntimeError):
                scheduler.process_pending()
        finally:
            scheduler.stop(timeout=5.0)
        assert not scheduler.running

    def test_stop_drains_queued_triggers(self, activity_log, snapshot_store, make_request):
        _fill(activity_log, make_request, 4)
        scheduler = SnapshotScheduler(activity_log, snapshot_store)
        scheduler.start()
        scheduler.request(manual_trigger())
        scheduler.stop(timeout=5.0)
        assert snapshot_store.latest_ordinal() == 4

    def test_stop_timeout_keeps_single_worker(
        self, activity_log, snapshot_store, make_request
    ):
        engine = BlockingEngine()
        scheduler = SnapshotScheduler(activity_log, snapshot_store, engine)
        _fill(activity_log, make_request, 1)
        scheduler.start()
        scheduler.request(manual_trigger())
        assert engine.entered.wait(timeout=5.0)

        scheduler.stop(timeout=0.05)
        assert scheduler.running
        with pytest.raises(RuntimeError):
            scheduler.start()

        engine.release.set()
        scheduler.stop(timeout=5.0)
        assert not scheduler.running
        assert snapshot_store.latest_ordinal() == 1

        # A fully stopped scheduler can be started again
        scheduler.start()
        scheduler.stop(timeout=5.0)
        assert not scheduler.running
