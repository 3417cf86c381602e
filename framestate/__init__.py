"""Framestate: current application state from an activity log and snapshots.

  - Append-only Activity Log with ordinal sequencing and uuid idempotency
  - Deterministic INS / ALT / NUL replay into per-frame record collections
  - Session-driven snapshot triggers (session end + inactivity timeout)
  - Coalescing single-worker snapshot scheduler
  - Ordinal-guarded compare-and-swap for the latest snapshot
  - Read path merging the latest snapshot with the activity tail
"""

__version__ = "0.1.0"
__description__ = "Activity log + snapshot materialization for fast client state loads"

from framestate.core.orchestrator import Orchestrator
from framestate.core.read_coordinator import ReadCoordinator
from framestate.cli.app import app as cli

__all__ = ["Orchestrator", "ReadCoordinator", "cli", "__version__"]
