"""
ESI (EVE Swagger Interface) client.

Provides access to alliance rosters and the alliance/corporation details
used to render notifications, via https://esi.evetech.net.
"""

import logging
from typing import Any

from pydantic import ValidationError

from ..core.errors import FetchError
from ..core.http import BaseApiClient, ExternalAPIError
from ..core.models import Alliance, Corporation, Roster
from .base import RosterSource

logger = logging.getLogger(__name__)

# Statuses meaning the request itself is wrong; retrying cannot help.
FATAL_STATUSES = {400, 401, 403, 404, 422}


class EsiClient(BaseApiClient):
    """ESI public endpoints client."""

    BASE_URL = "https://esi.evetech.net/latest"

    def __init__(
        self,
        base_url: str | None = None,
        user_agent: str = "alliance-watch",
        requests_per_minute: int = 300,
        timeout: float = 30.0,
        **kwargs: Any,
    ):
        super().__init__(
            base_url=base_url,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            params={"datasource": "tranquility"},
            requests_per_minute=requests_per_minute,
            timeout=timeout,
            **kwargs,
        )

    # =========================================================================
    # Alliances
    # =========================================================================

    async def get_alliance_corporations(self, alliance_id: int) -> list[int]:
        """Get the ids of all corporations in an alliance."""
        logger.debug(f"Fetching corporations of alliance {alliance_id}")
        response = await self._get(f"/alliances/{alliance_id}/corporations/")

        if not isinstance(response, list) or not all(
            isinstance(c, int) and not isinstance(c, bool) for c in response
        ):
            raise ExternalAPIError(
                f"Unexpected corporations payload for alliance {alliance_id}: {str(response)[:200]}",
                code="MALFORMED_RESPONSE",
            )
        return response

    async def get_alliance(self, alliance_id: int) -> Alliance:
        """Get public alliance information."""
        response = await self._get(f"/alliances/{alliance_id}/")
        return _parse(Alliance, response, f"alliance {alliance_id}")

    # =========================================================================
    # Corporations
    # =========================================================================

    async def get_corporation(self, corporation_id: int) -> Corporation:
        """Get public corporation information."""
        response = await self._get(f"/corporations/{corporation_id}/")
        return _parse(Corporation, response, f"corporation {corporation_id}")


def _parse(model: type, payload: Any, label: str) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ExternalAPIError(
            f"Unexpected payload for {label}: {e}",
            code="MALFORMED_RESPONSE",
        ) from e


class EsiRosterSource(RosterSource):
    """Reads one alliance's corporation roster from ESI."""

    def __init__(self, esi: EsiClient, alliance_id: int):
        self.esi = esi
        self.alliance_id = alliance_id

    async def fetch(self) -> Roster:
        """
        Fetch the current roster.

        Raises:
            FetchError: retryable for timeouts, 5xx, rate limiting and
                malformed payloads; fatal for an unknown alliance id or
                rejected credentials
        """
        try:
            corporations = await self.esi.get_alliance_corporations(self.alliance_id)
        except ExternalAPIError as e:
            fatal = e.status_code in FATAL_STATUSES
            raise FetchError(
                f"Fetching roster of alliance {self.alliance_id} failed: {e.message}",
                retryable=not fatal,
                status_code=e.status_code,
                retry_after=e.retry_after,
            ) from e

        roster = frozenset(corporations)
        if len(roster) != len(corporations):
            logger.warning(f"ESI returned duplicate corporation ids for alliance {self.alliance_id}")

        logger.debug(f"Alliance {self.alliance_id} has {len(roster)} corporations")
        return roster

    async def close(self) -> None:
        await self.esi.close()
