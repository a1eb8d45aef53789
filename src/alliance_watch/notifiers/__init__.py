"""
Notification sinks.

- DiscordNotifier: embeds posted through the Discord REST API
- LogNotifier: log-only, for dry runs
"""

from .base import Notifier
from .discord import DiscordClient, DiscordNotifier
from .log import LogNotifier
from .messages import build_embed, build_text

__all__ = [
    "Notifier",
    "DiscordClient",
    "DiscordNotifier",
    "LogNotifier",
    "build_embed",
    "build_text",
]
