"""
Data models for alliance membership tracking.

These models are used for:
- Validating ESI alliance/corporation payloads
- Membership change events handed to notifiers
- The persisted snapshot record
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field

# ESI ids are integers; string ids are accepted for other roster sources.
CorporationId = Union[int, str]
Roster = frozenset

SNAPSHOT_VERSION = 1


# =============================================================================
# Membership Events
# =============================================================================


class EventKind(Enum):
    """Direction of a membership transition."""

    LEFT = "left"
    JOINED = "joined"

    @property
    def title(self) -> str:
        return "Joined Alliance" if self is EventKind.JOINED else "Left Alliance"


@dataclass(frozen=True)
class MembershipEvent:
    """One corporation joining or leaving, as observed by one poll cycle."""

    corporation_id: CorporationId
    kind: EventKind
    observed_at: datetime
    alliance_id: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.kind.value.capitalize()}({self.corporation_id})"


# =============================================================================
# ESI Entities
# =============================================================================


class Alliance(BaseModel):
    """Subset of GET /alliances/{alliance_id}/."""

    name: str
    ticker: str
    creator_corporation_id: Optional[int] = None
    executor_corporation_id: Optional[int] = None
    date_founded: Optional[str] = None
    faction_id: Optional[int] = None


class Corporation(BaseModel):
    """Subset of GET /corporations/{corporation_id}/."""

    name: str
    ticker: str
    member_count: int = 0
    alliance_id: Optional[int] = None
    ceo_id: Optional[int] = None
    date_founded: Optional[str] = None
    tax_rate: Optional[float] = None
    url: Optional[str] = None
    war_eligible: Optional[bool] = None


# =============================================================================
# Snapshot
# =============================================================================


class SnapshotRecord(BaseModel):
    """Persisted roster. Owned by the state store."""

    version: int = SNAPSHOT_VERSION
    alliance_id: Optional[int] = None
    cycle: int = Field(default=0, ge=0)
    saved_at: datetime
    corporations: list[Union[int, str]] = Field(default_factory=list)
    checksum: str = ""

    @property
    def roster(self) -> Roster:
        return frozenset(self.corporations)
