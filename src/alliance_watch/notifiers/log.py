"""Notifier that only logs, for dry runs."""

import logging

from ..core.models import MembershipEvent
from .base import Notifier
from .messages import build_text

logger = logging.getLogger(__name__)


class LogNotifier(Notifier):
    """Writes each event to the log instead of a chat channel."""

    def __init__(self) -> None:
        self.delivered: list[MembershipEvent] = []

    async def notify(self, event: MembershipEvent) -> None:
        logger.info(f"[dry-run] {build_text(event)}")
        self.delivered.append(event)
