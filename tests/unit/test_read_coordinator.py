"""Tests for the ReadCoordinator — snapshot + tail merge equals full replay."""

from __future__ import annotations

from pathlib import Path

import pytest

from framestate.core.activity_log import ActivityLog
from framestate.core.ingestion import Ingestor
from framestate.core.read_coordinator import ReadCoordinator
from framestate.core.replay import ReplayEngine
from framestate.core.snapshot_store import SnapshotStore


@pytest.fixture
def history(activity_log: ActivityLog, make_request) -> ActivityLog:
    """A log exercising every operator, frame switches and anomalies."""
    requests = [
        make_request("INS", "org_1", {"fields": {"name": "A"}}),
        make_request("INS", "p_1", {"fields": {"age": 30}}, frame="people"),
        make_request("ALT", "org_1", {"field": "name", "old_value": "A", "new_value": "B"}),
        make_request("INS", "org_2", {"fields": {"name": "C"}}),
        make_request("NUL", "org_1", {"reason": "merged"}),
        make_request("ALT", "ghost", {"field": "x", "new_value": 1}),
        make_request("INS", "org_1", {"fields": {"name": "D"}}),
        make_request("ALT", "p_1", {"field": "age", "new_value": 31}, frame="people"),
    ]
    for req in requests:
        activity_log.append(req)
    return activity_log


class TestCurrentState:
    def test_without_snapshot_replays_whole_log(
        self, history: ActivityLog, snapshot_store: SnapshotStore
    ):
        state = ReadCoordinator(history, snapshot_store).get_current_state()

        assert state.snapshot_ordinal is None
        assert state.tail_count == 8
        assert state.last_activity_ordinal == 8
        assert [(r.id, r.fields) for r in state.frame("organizations")] == [
            ("org_2", {"name": "C"}),
            ("org_1", {"name": "D"}),
        ]
        assert state.frame("people")[0].fields == {"age": 31}
        assert state.anomaly_count == 1

    def test_empty_log_and_no_snapshot(self, activity_log, snapshot_store):
        state = ReadCoordinator(activity_log, snapshot_store).get_current_state()
        assert state.data == {}
        assert state.last_activity_ordinal == 0
        assert state.frame("anything") == []

    def test_merge_equals_full_replay_at_every_snapshot_point(
        self, history: ActivityLog, tmp_dir: Path
    ):
        engine = ReplayEngine()
        full = ReadCoordinator(history, SnapshotStore(tmp_dir / "none.db")).full_replay()

        for n in range(0, history.max_ordinal() + 1):
            store = SnapshotStore(tmp_dir / f"at-{n}.db")
            snapshot, _ = engine.compute_snapshot(history.iter_since(0, upto=n))
            if snapshot is not None:
                store.store_snapshot(snapshot)

            state = ReadCoordinator(history, store, engine).get_current_state()

            assert state.data == full.data, f"diverged with snapshot at ordinal {n}"
            assert state.data_hash == full.data_hash
            assert state.last_activity_ordinal == 8
            assert state.tail_count == 8 - n

    def test_reads_are_never_cached(
        self, history: ActivityLog, snapshot_store: SnapshotStore, make_request
    ):
        reader = ReadCoordinator(history, snapshot_store)
        before = reader.get_current_state()
        history.append(make_request("NUL", "org_2"))
        after = reader.get_current_state()

        assert before.last_activity_ordinal == 8
        assert after.last_activity_ordinal == 9
        assert [r.id for r in after.frame("organizations")] == ["org_1"]


class TestVerify:
    def test_verify_with_and_without_snapshot(
        self, history: ActivityLog, snapshot_store: SnapshotStore, make_request
    ):
        reader = ReadCoordinator(history, snapshot_store)
        assert reader.verify() is True

        snapshot, _ = ReplayEngine().compute_snapshot(history.iter_since(0, upto=5))
        assert snapshot is not None
        snapshot_store.store_snapshot(snapshot)
        history.append(make_request("ALT", "org_2", {"field": "name", "new_value": "E"}))

        assert reader.verify() is True

    def test_verify_detects_corrupt_snapshot(
        self, history: ActivityLog, snapshot_store: SnapshotStore
    ):
        # A snapshot that claims ordinal 8 but holds no records
        snapshot, _ = ReplayEngine().compute_snapshot(history.iter_since(0, upto=1))
        assert snapshot is not None
        snapshot_store.store_snapshot(
            snapshot.model_copy(update={"last_activity_ordinal": 8})
        )
        assert ReadCoordinator(history, snapshot_store).verify() is False


class TestStoredValuesRoundTrip:
    def test_merged_data_equals_full_replay_for_ingested_floats(
        self, activity_log: ActivityLog, snapshot_store: SnapshotStore
    ):
        ingestor = Ingestor(activity_log)
        for uuid, payload in [
            ("1", {"fields": {"x": 0.1, "big": 1e308, "tiny": 5e-324}}),
            ("2", {"fields": {"y": -2.5}}),
        ]:
            ingestor.ingest({
                "agent": "a", "uuid": uuid, "operator": "INS",
                "target": f"r{uuid}", "frame": "numbers", "payload": payload,
            })
        snapshot, _ = ReplayEngine().compute_snapshot(activity_log.iter_since(0))
        assert snapshot is not None
        snapshot_store.store_snapshot(snapshot)

        reader = ReadCoordinator(activity_log, snapshot_store)
        merged = reader.get_current_state()
        full = reader.full_replay()

        assert merged.snapshot_ordinal == 2
        assert merged.data == full.data
        assert merged.frame("numbers")[0].fields == {"x": 0.1, "big": 1e308, "tiny": 5e-324}
