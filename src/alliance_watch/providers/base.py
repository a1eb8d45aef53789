"""
Roster source protocol.

Defines the one read operation the poll scheduler needs from an upstream
data provider: the set of corporations currently in the alliance.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..core.models import Roster


class RosterSource(ABC):
    """
    Abstract roster source.

    Implementations must be side-effect free and safe to call repeatedly;
    every call is an independent snapshot request. Failures are raised as
    FetchError with ``retryable`` set according to whether another attempt
    could succeed.
    """

    @abstractmethod
    async def fetch(self) -> Roster:
        """Return the corporation ids currently in the alliance."""
        pass

    async def close(self) -> None:
        """Release any held connections."""
        pass
