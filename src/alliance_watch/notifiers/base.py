"""Notifier protocol consumed by the poll scheduler."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..core.models import MembershipEvent


class Notifier(ABC):
    """
    Delivers one membership event to the configured channel.

    Every failure must surface as NotifyError; the scheduler retries each
    event independently. Rate limiting toward the chat platform is the
    notifier's concern.
    """

    @abstractmethod
    async def notify(self, event: MembershipEvent) -> None:
        pass

    async def close(self) -> None:
        """Release any held connections."""
        pass
