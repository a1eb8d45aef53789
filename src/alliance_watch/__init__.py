"""
Alliance membership watcher.

Polls ESI for the corporations of one EVE Online alliance, diffs the roster
against the last persisted snapshot, and announces joins and leaves in a
Discord channel.

Usage:
    from alliance_watch import PollScheduler, diff_rosters

    events = diff_rosters({1, 2, 3}, {2, 3, 4})
    # [Left(1), Joined(4)]
"""

__version__ = "0.3.0"

from .roster_diff import DiffResult, diff_rosters, summarize
from .scheduler import CycleResult, PollScheduler, SchedulerState
from .state import JsonStateStore

__all__ = [
    "__version__",
    # Diff
    "DiffResult",
    "diff_rosters",
    "summarize",
    # Scheduler
    "CycleResult",
    "PollScheduler",
    "SchedulerState",
    # State
    "JsonStateStore",
]
