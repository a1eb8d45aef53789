"""
Notification message builders.

RULES:
- No network calls
- No environment access
- Always return plain data (str / dict) ready to post
"""

from typing import Any, Optional

from ..core.models import Alliance, Corporation, MembershipEvent

DOTLAN_BASE = "https://evemaps.dotlan.net"
EMBED_COLOR = 0xBC45FF


def dotlan_link(kind: str, name: str) -> str:
    return f"{DOTLAN_BASE}/{kind}/{name.replace(' ', '_')}"


def _linked(kind: str, name: str, ticker: str) -> str:
    return f"{name} ([{ticker}]({dotlan_link(kind, name)}))"


def build_embed(
    event: MembershipEvent,
    corporation: Corporation,
    alliance: Optional[Alliance] = None,
) -> dict[str, Any]:
    """Discord embed for a corporation joining or leaving the alliance."""
    fields = [
        {
            "name": "Corporation",
            "value": _linked("corp", corporation.name, corporation.ticker),
            "inline": False,
        },
        {
            "name": "Member Count",
            "value": str(corporation.member_count),
            "inline": False,
        },
    ]
    if alliance is not None:
        fields.append({
            "name": "Alliance",
            "value": _linked("alliance", alliance.name, alliance.ticker),
            "inline": False,
        })

    return {
        "title": event.kind.title,
        "fields": fields,
        "color": EMBED_COLOR,
        "timestamp": event.observed_at.isoformat(),
    }


def build_text(event: MembershipEvent, corporation: Optional[Corporation] = None) -> str:
    """One-line rendering, used for logs and dry runs."""
    if corporation is None:
        who = f"Corporation {event.corporation_id}"
    else:
        who = f"{corporation.name} [{corporation.ticker}] ({corporation.member_count} members)"
    where = f" alliance {event.alliance_id}" if event.alliance_id is not None else ""
    return f"{event.kind.title}{where}: {who}"
