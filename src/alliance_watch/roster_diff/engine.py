"""
Roster diff engine: derives corporation join/leave events from two snapshots.

Features:
- Pure function of the previous and current roster, no I/O
- First observation (no previous roster) is a silent baseline
- Deterministic order: every Left before any Joined, ascending id within a kind
- DiffResult summary for cycle logging
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ..core.models import CorporationId, EventKind, MembershipEvent


@dataclass
class DiffResult:
    """Summary of one roster comparison."""

    left: list[CorporationId] = field(default_factory=list)
    joined: list[CorporationId] = field(default_factory=list)
    unchanged: int = 0
    baseline: bool = False

    @property
    def has_changes(self) -> bool:
        """Whether any membership changes were detected."""
        return bool(self.left or self.joined)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "left": list(self.left),
            "joined": list(self.joined),
            "unchanged": self.unchanged,
            "baseline": self.baseline,
        }


def diff_rosters(
    old: Optional[Iterable[CorporationId]],
    new: Iterable[CorporationId],
    observed_at: Optional[datetime] = None,
    alliance_id: Optional[int] = None,
) -> list[MembershipEvent]:
    """
    Compare two rosters and return the membership events between them.

    Args:
        old: Last known roster, or None on the very first observation
        new: Roster fetched this cycle
        observed_at: Cycle timestamp stamped on every event (defaults to now, UTC)
        alliance_id: Alliance the rosters belong to, carried on the events

    Returns:
        Left events in ascending id order followed by Joined events in
        ascending id order. Empty when ``old`` is None.
    """
    if old is None:
        return []

    old_set = frozenset(old)
    new_set = frozenset(new)
    observed_at = observed_at or datetime.now(timezone.utc)

    events = [
        MembershipEvent(corporation_id, EventKind.LEFT, observed_at, alliance_id)
        for corporation_id in sorted(old_set - new_set)
    ]
    events.extend(
        MembershipEvent(corporation_id, EventKind.JOINED, observed_at, alliance_id)
        for corporation_id in sorted(new_set - old_set)
    )
    return events


def summarize(
    old: Optional[Iterable[CorporationId]],
    new: Iterable[CorporationId],
    events: list[MembershipEvent],
) -> DiffResult:
    """Build a DiffResult for the events produced by diff_rosters."""
    new_set = frozenset(new)
    if old is None:
        return DiffResult(unchanged=len(new_set), baseline=True)

    return DiffResult(
        left=[e.corporation_id for e in events if e.kind is EventKind.LEFT],
        joined=[e.corporation_id for e in events if e.kind is EventKind.JOINED],
        unchanged=len(new_set & frozenset(old)),
    )
