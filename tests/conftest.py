"""
Pytest configuration and fakes for alliance-watch tests.

The fakes stand in for the three collaborators of the poll scheduler so the
cycle logic can be exercised without network or disk.
"""

from __future__ import annotations

from typing import Iterable, Optional

import pytest

from alliance_watch.core.config import get_settings
from alliance_watch.core.errors import FetchError, NotifyError, StoreError
from alliance_watch.core.models import MembershipEvent
from alliance_watch.core.retry import RetryPolicy
from alliance_watch.notifiers.base import Notifier
from alliance_watch.providers.base import RosterSource
from alliance_watch.scheduler import PollScheduler
from alliance_watch.state.store import StateStore

ALLIANCE_ID = 99010468


class ScriptedSource(RosterSource):
    """Returns (or raises) the scripted items in order; repeats the last one."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls = 0

    async def fetch(self) -> frozenset:
        item = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(item, BaseException):
            raise item
        return frozenset(item)


class MemoryStore(StateStore):
    """In-memory snapshot; ``fail_saves`` makes the next N saves fail."""

    def __init__(self, roster: Optional[Iterable] = None, fail_saves: int = 0):
        self.roster = frozenset(roster) if roster is not None else None
        self.fail_saves = fail_saves
        self.saves: list[frozenset] = []
        self.loads = 0

    def load(self) -> Optional[frozenset]:
        self.loads += 1
        return self.roster

    def save(self, roster) -> None:
        if self.fail_saves > 0:
            self.fail_saves -= 1
            raise StoreError("disk full")
        self.roster = frozenset(roster)
        self.saves.append(self.roster)


class RecordingNotifier(Notifier):
    """Records delivered events; ids in ``failing`` always raise NotifyError."""

    def __init__(self, failing: Iterable = (), store: Optional[MemoryStore] = None):
        self.failing = set(failing)
        self.delivered: list[MembershipEvent] = []
        self.attempts: list[MembershipEvent] = []
        self.store = store
        self.persisted_before_notify: list[bool] = []

    async def notify(self, event: MembershipEvent) -> None:
        self.attempts.append(event)
        if self.store is not None:
            self.persisted_before_notify.append(bool(self.store.saves))
        if event.corporation_id in self.failing:
            raise NotifyError(f"channel unavailable for {event.corporation_id}")
        self.delivered.append(event)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy that never actually sleeps."""
    return RetryPolicy(max_attempts=3, base_delay=0, multiplier=1, max_delay=0)


@pytest.fixture
def make_scheduler(fast_policy):
    """Factory building a scheduler around the given fakes."""

    def factory(source, store, notifier, **kwargs) -> PollScheduler:
        options = dict(
            interval=60,
            alliance_id=ALLIANCE_ID,
            fetch_policy=fast_policy,
            persist_policy=fast_policy,
            notify_policy=fast_policy,
            fetch_timeout=1.0,
            persist_timeout=1.0,
            notify_timeout=1.0,
        )
        options.update(kwargs)
        return PollScheduler(source, store, notifier, **options)

    return factory


@pytest.fixture
def fetch_unavailable() -> FetchError:
    return FetchError("ESI returned 503", retryable=True, status_code=503)


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Isolated environment: fresh settings cache, no stray .env, tmp state path."""
    monkeypatch.chdir(tmp_path)
    for name in ("DISCORD_TOKEN", "NOTIFY_CHANNEL_ID", "POLL_INTERVAL_SECONDS", "MIN_MEMBER_COUNT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ALLIANCE_ID", str(ALLIANCE_ID))
    monkeypatch.setenv("STATE_PATH", str(tmp_path / "state" / "roster.json"))
    monkeypatch.setenv("RETRY_BASE_DELAY", "0")
    monkeypatch.setenv("RETRY_MAX_DELAY", "0")
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()
