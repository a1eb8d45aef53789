"""
Roster providers.

Usage:
    from alliance_watch.providers import EsiClient, EsiRosterSource

    async with EsiClient() as esi:
        source = EsiRosterSource(esi, alliance_id=99010468)
        roster = await source.fetch()
"""

from .base import RosterSource
from .esi import EsiClient, EsiRosterSource

__all__ = [
    "RosterSource",
    "EsiClient",
    "EsiRosterSource",
]
