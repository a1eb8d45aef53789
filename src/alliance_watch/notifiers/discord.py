"""
Discord notifier.

Posts one embed per membership event to a channel through the Discord REST
API using a bot token. Alliance and corporation details are resolved through
the cached InformationService.
"""

import asyncio
import logging
from typing import Any

from ..core.errors import NotifyError
from ..core.http import BaseApiClient, ExternalAPIError
from ..core.models import MembershipEvent
from ..services.information import InformationService
from .base import Notifier
from .messages import build_embed, build_text

logger = logging.getLogger(__name__)


class DiscordClient(BaseApiClient):
    """Minimal Discord REST client (bot authentication)."""

    BASE_URL = "https://discord.com/api/v10"

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        requests_per_minute: int = 50,
        **kwargs: Any,
    ):
        super().__init__(
            base_url=base_url,
            headers={"Authorization": f"Bot {token}"},
            requests_per_minute=requests_per_minute,
            **kwargs,
        )

    async def create_message(self, channel_id: int, payload: dict[str, Any]) -> dict[str, Any]:
        """POST /channels/{channel_id}/messages"""
        return await self._post(f"/channels/{channel_id}/messages", json=payload)


class DiscordNotifier(Notifier):
    """
    Announces corporation joins/leaves as Discord embeds.

    Corporations with fewer than ``min_member_count`` members are logged and
    skipped rather than announced.
    """

    def __init__(
        self,
        client: DiscordClient,
        channel_id: int,
        information: InformationService,
        min_member_count: int = 0,
    ):
        self.client = client
        self.channel_id = channel_id
        self.information = information
        self.min_member_count = min_member_count

    async def notify(self, event: MembershipEvent) -> None:
        """
        Render and post the event.

        Raises:
            NotifyError: ESI lookup or Discord post failed
        """
        try:
            if event.alliance_id is not None:
                corporation, alliance = await asyncio.gather(
                    self.information.get_corporation(event.corporation_id),
                    self.information.get_alliance(event.alliance_id),
                )
            else:
                corporation = await self.information.get_corporation(event.corporation_id)
                alliance = None
        except ExternalAPIError as e:
            raise NotifyError(
                f"Could not resolve details for {event}: {e.message}",
                status_code=e.status_code,
                retry_after=e.retry_after,
            ) from e

        if corporation.member_count < self.min_member_count:
            logger.info(
                f"Not announcing {build_text(event, corporation)}: "
                f"below {self.min_member_count} members"
            )
            return

        payload = {"embeds": [build_embed(event, corporation, alliance)]}
        try:
            await self.client.create_message(self.channel_id, payload)
        except ExternalAPIError as e:
            raise NotifyError(
                f"Discord rejected notification for {event}: {e.message}",
                status_code=e.status_code,
                retry_after=e.retry_after,
            ) from e

        logger.info(f"Sent notification: {build_text(event, corporation)}")

    async def close(self) -> None:
        await self.client.close()
