"""
Cached alliance and corporation lookups used when rendering notifications.

Names, tickers and member counts change rarely, so each id is fetched from
ESI at most once per TTL window.
"""

import logging

from ..core.models import Alliance, Corporation
from ..providers.esi import EsiClient
from .cache import DetailCache

logger = logging.getLogger(__name__)


class InformationService:
    """ESI detail lookups with a TTL cache in front."""

    def __init__(self, esi: EsiClient, ttl: int = 3600):
        self.esi = esi
        self.cache = DetailCache(ttl=ttl)

    async def get_alliance(self, alliance_id: int) -> Alliance:
        return await self.cache.get_or_load(
            "alliance", alliance_id, lambda: self.esi.get_alliance(alliance_id)
        )

    async def get_corporation(self, corporation_id: int) -> Corporation:
        async def load() -> Corporation:
            corporation = await self.esi.get_corporation(corporation_id)
            logger.debug(f"Cached corporation {corporation_id} ({corporation.name})")
            return corporation

        return await self.cache.get_or_load("corporation", corporation_id, load)

    def clear(self) -> None:
        self.cache.clear()
