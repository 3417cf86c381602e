"""Session Tracker — per-agent inactivity deadlines feeding the scheduler.

Every successfully ingested activity resets its agent's inactivity
deadline.  A session ends in exactly one of two ways, and each raises
exactly one trigger:

- ``end_session()`` — the external beacon reports the client is leaving.
- inactivity timeout — no activity for ``inactivity_timeout`` seconds.

Each scheduled deadline carries a generation number.  A deadline that
fires after its session was ended or rescheduled sees a mismatched
generation and does nothing, so an end-signal racing an expiring timer
for the same agent never double-triggers.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from framestate.core.scheduler import SnapshotScheduler
from framestate.models.session import SessionInfo, TriggerReason, TriggerSignal

logger = logging.getLogger(__name__)


class CancellableTimer(Protocol):
    """What the tracker needs from a scheduled deadline."""

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], CancellableTimer]


def thread_timer(interval: float, callback: Callable[[], None]) -> CancellableTimer:
    """Default timer factory: a daemon ``threading.Timer``."""
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


class _Session:
    """Mutable per-agent state, private to the tracker."""

    __slots__ = ("agent", "last_ordinal_seen", "last_activity_time", "generation", "timer")

    def __init__(self, agent: str, ordinal: int, time: datetime) -> None:
        self.agent = agent
        self.last_ordinal_seen = ordinal
        self.last_activity_time = time
        self.generation = 0
        self.timer: CancellableTimer | None = None


class SessionTracker:
    """Tracks active agents and raises snapshot triggers on session end.

    Parameters
    ----------
    scheduler:
        Receives every trigger signal.
    inactivity_timeout:
        Seconds without ``record_activity`` before a session times out.
    timer_factory:
        Builds cancellable deadlines.  Defaults to ``thread_timer``.
    """

    def __init__(
        self,
        scheduler: SnapshotScheduler,
        *,
        inactivity_timeout: float = 300.0,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._timeout = inactivity_timeout
        self._timer_factory = timer_factory or thread_timer
        self._lock = threading.Lock()
        self._sessions: dict[str, _Session] = {}

    @property
    def inactivity_timeout(self) -> float:
        return self._timeout

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def record_activity(self, agent: str, ordinal: int, time: datetime) -> None:
        """Note an ingested activity and push the agent's deadline out."""
        with self._lock:
            session = self._sessions.get(agent)
            if session is None:
                session = _Session(agent, ordinal, time)
                self._sessions[agent] = session
                logger.debug("Session opened for agent %s at ordinal %d", agent, ordinal)
            else:
                session.last_ordinal_seen = max(session.last_ordinal_seen, ordinal)
                session.last_activity_time = time
                if session.timer is not None:
                    session.timer.cancel()

            session.generation += 1
            generation = session.generation
            session.timer = self._timer_factory(
                self._timeout, lambda: self._on_timeout(agent, generation)
            )
            session.timer.start()

    def end_session(self, agent: str, last_ordinal: int | None = None) -> None:
        """Tear the session down and raise a trigger immediately.

        An agent with no open session still raises a trigger; if its
        activities were already covered the scheduler skips the empty range.
        """
        with self._lock:
            session = self._sessions.pop(agent, None)
            if session is not None and session.timer is not None:
                session.timer.cancel()
            if last_ordinal is None and session is not None:
                last_ordinal = session.last_ordinal_seen

        logger.info("Session ended for agent %s (last ordinal %s)", agent, last_ordinal)
        self._scheduler.request(
            TriggerSignal(
                reason=TriggerReason.SESSION_END,
                agent=agent,
                last_ordinal=last_ordinal,
            )
        )

    def _on_timeout(self, agent: str, generation: int) -> None:
        with self._lock:
            session = self._sessions.get(agent)
            if session is None or session.generation != generation:
                # Ended or rescheduled after this deadline was armed
                return
            del self._sessions[agent]
            last_ordinal = session.last_ordinal_seen

        logger.info(
            "Session for agent %s timed out after %.0fs (last ordinal %d)",
            agent,
            self._timeout,
            last_ordinal,
        )
        self._scheduler.request(
            TriggerSignal(
                reason=TriggerReason.INACTIVITY_TIMEOUT,
                agent=agent,
                last_ordinal=last_ordinal,
            )
        )

    # ------------------------------------------------------------------
    # Introspection and shutdown
    # ------------------------------------------------------------------

    def sessions(self) -> list[SessionInfo]:
        """Read-only view of the open sessions, ordered by agent."""
        with self._lock:
            return [
                SessionInfo(
                    agent=s.agent,
                    last_ordinal_seen=s.last_ordinal_seen,
                    last_activity_time=s.last_activity_time,
                    generation=s.generation,
                )
                for _, s in sorted(self._sessions.items())
            ]

    def is_active(self, agent: str) -> bool:
        with self._lock:
            return agent in self._sessions

    def close(self) -> dict[str, int]:
        """Cancel every pending deadline without raising triggers.

        Returns agent -> last ordinal seen for the sessions dropped.
        """
        with self._lock:
            dropped = {a: s.last_ordinal_seen for a, s in self._sessions.items()}
            for session in self._sessions.values():
                if session.timer is not None:
                    session.timer.cancel()
            self._sessions.clear()
        return dropped
