"""Shared test fixtures for Framestate."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from framestate.config import StateConfig
from framestate.core.activity_log import ActivityLog
from framestate.core.replay import ReplayEngine
from framestate.core.snapshot_store import SnapshotStore
from framestate.models.activity import Activity, IngestRequest, Operator
from framestate.models.session import TriggerSignal

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test databases."""
    return tmp_path


@pytest.fixture
def activity_log(tmp_dir: Path) -> ActivityLog:
    """Provide a fresh ActivityLog backed by a temp SQLite database."""
    return ActivityLog(tmp_dir / "activities.db", page_size=3)


@pytest.fixture
def snapshot_store(tmp_dir: Path) -> SnapshotStore:
    """Provide a fresh SnapshotStore backed by a temp SQLite database."""
    return SnapshotStore(tmp_dir / "snapshots.db", retention=10)


@pytest.fixture
def engine() -> ReplayEngine:
    return ReplayEngine()


@pytest.fixture
def state_config(tmp_dir: Path) -> StateConfig:
    return StateConfig(
        activity_log_path=tmp_dir / "activities.db",
        snapshot_store_path=tmp_dir / "snapshots.db",
        page_size=4,
    )


# ---------------------------------------------------------------------------
# Activity factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_activity() -> Callable[..., Activity]:
    """Factory fixture: an in-memory Activity with a fixed ordinal and time."""

    def _factory(
        ordinal: int,
        operator: Operator | str,
        target: str = "org_1",
        payload: dict[str, Any] | None = None,
        *,
        frame: str = "organizations",
        agent: str = "agent-a",
    ) -> Activity:
        return Activity(
            ordinal=ordinal,
            created_at=BASE_TIME + timedelta(seconds=ordinal),
            agent=agent,
            uuid=f"uuid-{ordinal}",
            operator=Operator(operator),
            target=target,
            frame=frame,
            payload=payload or {},
        )

    return _factory


@pytest.fixture
def make_request() -> Callable[..., IngestRequest]:
    """Factory fixture: an IngestRequest with sensible defaults."""
    counter = {"n": 0}

    def _factory(
        operator: Operator | str,
        target: str = "org_1",
        payload: dict[str, Any] | None = None,
        *,
        frame: str = "organizations",
        agent: str = "agent-a",
        uuid: str | None = None,
    ) -> IngestRequest:
        counter["n"] += 1
        return IngestRequest(
            agent=agent,
            uuid=uuid or f"req-{counter['n']}",
            operator=Operator(operator),
            target=target,
            frame=frame,
            payload=payload or {},
        )

    return _factory


# ---------------------------------------------------------------------------
# Timers and trigger sinks
# ---------------------------------------------------------------------------


class FakeTimer:
    """A deadline that only fires when the test says so."""

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        """Expire normally: does nothing once cancelled."""
        if not self.cancelled:
            self.callback()

    def fire_racing_cancel(self) -> None:
        """Expire even though cancel() was called (the thread was already running)."""
        self.callback()


class FakeTimerFactory:
    """Timer factory that records every timer it builds."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, interval: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(interval, callback)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> FakeTimer:
        return self.timers[-1]


class RecordingScheduler:
    """Stands in for SnapshotScheduler; records trigger signals."""

    def __init__(self) -> None:
        self.signals: list[TriggerSignal] = []

    def request(self, signal: TriggerSignal) -> None:
        self.signals.append(signal)


@pytest.fixture
def fake_timers() -> FakeTimerFactory:
    return FakeTimerFactory()


@pytest.fixture
def recording_scheduler() -> RecordingScheduler:
    return RecordingScheduler()
