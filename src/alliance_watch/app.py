"""
Component wiring.

Builds the ESI roster source, snapshot store and notifier from Settings so
the CLI (and tests) get one place that knows how the pieces fit together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .core.config import Settings
from .core.errors import FatalError
from .notifiers import DiscordClient, DiscordNotifier, LogNotifier, Notifier
from .providers import EsiClient, EsiRosterSource, RosterSource
from .scheduler import PollScheduler
from .services import InformationService
from .state import JsonStateStore, ReadOnlyStateStore, StateStore

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Everything a poll scheduler needs, plus cleanup."""

    source: RosterSource
    store: StateStore
    notifier: Notifier

    def scheduler(self, settings: Settings) -> PollScheduler:
        return PollScheduler.from_settings(settings, self.source, self.store, self.notifier)

    async def close(self) -> None:
        await self.notifier.close()
        await self.source.close()


def build_esi_client(settings: Settings) -> EsiClient:
    return EsiClient(
        base_url=settings.esi_base_url,
        user_agent=settings.esi_user_agent,
        requests_per_minute=settings.esi_requests_per_minute,
        timeout=settings.fetch_timeout_seconds,
    )


def build_store(settings: Settings, dry_run: bool = False) -> StateStore:
    """The snapshot store; read-only for dry runs."""
    store = JsonStateStore(settings.state_path, alliance_id=settings.alliance_id)
    if dry_run:
        return ReadOnlyStateStore(store)
    return store


def build_components(settings: Settings, dry_run: bool = False) -> Components:
    """
    Wire the production components.

    Args:
        settings: Resolved configuration
        dry_run: Log notifications instead of posting them to Discord, and
                 leave the snapshot untouched

    Raises:
        FatalError: Discord delivery requested but not configured
    """
    esi = build_esi_client(settings)
    source = EsiRosterSource(esi, settings.alliance_id)
    store = build_store(settings, dry_run=dry_run)

    if dry_run:
        notifier: Notifier = LogNotifier()
    else:
        if not settings.discord_configured:
            raise FatalError(
                "DISCORD_TOKEN and NOTIFY_CHANNEL_ID must be set (or use --dry-run)"
            )
        notifier = DiscordNotifier(
            DiscordClient(
                settings.discord_token,
                base_url=settings.discord_api_url,
                timeout=settings.notify_timeout_seconds,
            ),
            channel_id=settings.notify_channel_id,
            information=InformationService(esi, ttl=settings.info_cache_ttl),
            min_member_count=settings.min_member_count,
        )

    logger.debug(f"Components ready (dry_run={dry_run}, state={settings.state_path})")
    return Components(source=source, store=store, notifier=notifier)
