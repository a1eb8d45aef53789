"""
Poll scheduler: drives the fetch -> diff -> persist -> notify cycle.

One cycle at a time, never overlapped. The in-memory roster is owned by the
scheduler and replaced only after the new snapshot is durably saved.
A snapshot write that outlives its timeout keeps running in its worker thread;
it is waited for before any retry, so the store never has two writers.

Ordering choice: persist before notify. A restart after a crash can never
re-derive (and re-send) events whose roster is already persisted; the price
is that a crash strictly between persist and notify loses that cycle's
notifications. We prefer no duplicates over no omissions.

Usage:
    scheduler = PollScheduler(source, store, notifier, interval=300)
    scheduler.start()               # loads the last snapshot
    await scheduler.run()           # until scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from .core.errors import (
    FatalError,
    FetchError,
    RetryExhaustedError,
    StoreError,
)
from .core.models import MembershipEvent, Roster
from .core.retry import RetryPolicy, sleep_or_stop
from .roster_diff import DiffResult, diff_rosters, summarize

if TYPE_CHECKING:
    from .core.config import Settings
    from .notifiers.base import Notifier
    from .providers.base import RosterSource
    from .state.store import StateStore

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    """Where the poll loop currently is."""

    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class CycleOutcome(Enum):
    """How a cycle ended."""

    COMPLETED = "completed"
    BASELINE = "baseline"
    FETCH_FAILED = "fetch_failed"
    ABORTED = "aborted"


@dataclass
class CycleResult:
    """Result of one poll cycle."""

    cycle: int
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    outcome: CycleOutcome = CycleOutcome.ABORTED
    roster_size: int = 0
    diff: Optional[DiffResult] = None
    events: list[MembershipEvent] = field(default_factory=list)
    delivered: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "cycle": self.cycle,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "outcome": self.outcome.value,
            "roster_size": self.roster_size,
            "diff": self.diff.to_dict() if self.diff else None,
            "events": [str(e) for e in self.events],
            "delivered": self.delivered,
            "failed": self.failed,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }


def _fetch_retryable(error: Exception) -> bool:
    # Only an explicitly fatal FetchError (bad alliance id, auth) stops the loop.
    return not (isinstance(error, FetchError) and not error.retryable)


def _persist_retryable(error: Exception) -> bool:
    return isinstance(error, StoreError)


def _notify_retryable(error: Exception) -> bool:
    return True


class PollScheduler:
    """
    Runs membership cycles on a fixed interval.

    Each cycle:
    1. Fetch the roster (retried with backoff; a fatal fetch error stops the loop)
    2. Diff it against the in-memory roster loaded at startup
    3. Persist the new roster (retried; exhaustion stops the loop)
    4. Notify each event in diff order (retried per event; failures are dropped)
    """

    def __init__(
        self,
        source: "RosterSource",
        store: "StateStore",
        notifier: "Notifier",
        *,
        interval: float = 300.0,
        alliance_id: Optional[int] = None,
        fetch_policy: Optional[RetryPolicy] = None,
        persist_policy: Optional[RetryPolicy] = None,
        notify_policy: Optional[RetryPolicy] = None,
        fetch_timeout: Optional[float] = 30.0,
        persist_timeout: Optional[float] = 10.0,
        notify_timeout: Optional[float] = 30.0,
        notify_concurrency: int = 1,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        if notify_concurrency < 1:
            raise ValueError("notify_concurrency must be at least 1")

        self.source = source
        self.store = store
        self.notifier = notifier
        self.interval = interval
        self.alliance_id = alliance_id
        self.fetch_policy = fetch_policy or RetryPolicy()
        self.persist_policy = persist_policy or RetryPolicy(max_attempts=3)
        self.notify_policy = notify_policy or RetryPolicy()
        self.fetch_timeout = fetch_timeout
        self.persist_timeout = persist_timeout
        self.notify_timeout = notify_timeout
        self.notify_concurrency = notify_concurrency

        self._state = SchedulerState.IDLE
        self._stop = asyncio.Event()
        self._roster: Optional[Roster] = None
        self._save_task: Optional[asyncio.Future] = None
        self._save_roster: Optional[Roster] = None
        self._started = False
        self._cycles = 0
        self.last_result: Optional[CycleResult] = None

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        source: "RosterSource",
        store: "StateStore",
        notifier: "Notifier",
    ) -> "PollScheduler":
        """Build a scheduler wired with the configured intervals, timeouts and policies."""
        policy = settings.retry_policy()
        return cls(
            source,
            store,
            notifier,
            interval=settings.poll_interval_seconds,
            alliance_id=settings.alliance_id,
            fetch_policy=policy,
            persist_policy=settings.retry_policy(settings.persist_max_attempts),
            notify_policy=policy,
            fetch_timeout=settings.fetch_timeout_seconds,
            persist_timeout=settings.persist_timeout_seconds,
            notify_timeout=settings.notify_timeout_seconds,
            notify_concurrency=settings.notify_concurrency,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def roster(self) -> Optional[Roster]:
        """Last committed roster (None until a baseline exists)."""
        return self._roster

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        """
        Seed the in-memory roster from the state store.

        Raises:
            SnapshotCorruptError, IncompatibleSnapshotError: the persisted
                snapshot cannot be trusted; the process must not continue
        """
        self._roster = self.store.load()
        self._started = True
        self._state = SchedulerState.IDLE

    def stop(self) -> None:
        """Request shutdown. Waits are interrupted; the current cycle winds down."""
        if not self._stop.is_set():
            logger.info("Shutdown requested")
        self._stop.set()

    async def run(self, max_cycles: Optional[int] = None) -> None:
        """
        Run cycles until stop() is called (or ``max_cycles`` have run).

        The first cycle starts immediately. The interval is measured from the
        start of each cycle; an overrunning cycle is followed immediately by
        the next one, never overlapped with it.

        Raises:
            FatalError: fatal fetch error or persistence exhausted its retries
        """
        if not self._started:
            self.start()

        loop = asyncio.get_running_loop()
        completed = 0
        logger.info(
            f"Watching alliance {self.alliance_id} every {self.interval:g}s "
            f"({'no baseline yet' if self._roster is None else f'{len(self._roster)} corporations known'})"
        )

        try:
            while not self._stop.is_set():
                cycle_start = loop.time()
                await self.run_cycle()
                completed += 1

                if max_cycles is not None and completed >= max_cycles:
                    break
                if self._stop.is_set():
                    break

                self._state = SchedulerState.IDLE
                remaining = self.interval - (loop.time() - cycle_start)
                if remaining > 0:
                    await sleep_or_stop(remaining, self._stop)
        finally:
            self._state = SchedulerState.STOPPED
            logger.info(f"Poll scheduler stopped after {completed} cycles")

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run_cycle(self) -> CycleResult:
        """
        Run exactly one fetch -> diff -> persist -> notify cycle.

        Raises:
            FatalError: see run()
        """
        if not self._started:
            self.start()

        self._cycles += 1
        result = CycleResult(cycle=self._cycles)
        self.last_result = result

        try:
            roster = await self._fetch(result)
            if roster is None:
                return result
            result.roster_size = len(roster)

            self._state = SchedulerState.DIFFING
            previous = self._roster
            events = diff_rosters(previous, roster, result.started_at, self.alliance_id)
            result.diff = summarize(previous, roster, events)
            result.events = events

            if self._stop.is_set():
                logger.info("Shutdown before persisting, discarding this cycle")
                result.outcome = CycleOutcome.ABORTED
                return result

            if not await self._persist(roster, result):
                return result
            self._roster = roster

            if previous is None:
                logger.info(f"Baseline established with {len(roster)} corporations")
                result.outcome = CycleOutcome.BASELINE
                return result

            if events:
                logger.info(
                    f"Cycle {result.cycle}: {len(result.diff.left)} left, "
                    f"{len(result.diff.joined)} joined"
                )
                await self._notify_all(events, result)
            else:
                logger.debug(f"Cycle {result.cycle}: no membership changes")

            result.outcome = CycleOutcome.COMPLETED
            return result
        finally:
            result.completed_at = datetime.now(timezone.utc)
            if self._state is not SchedulerState.STOPPED:
                self._state = SchedulerState.IDLE

    async def _fetch(self, result: CycleResult) -> Optional[Roster]:
        async def attempt() -> Roster:
            self._state = SchedulerState.FETCHING
            return frozenset(await self.source.fetch())

        try:
            return await self.fetch_policy.call(
                attempt,
                operation="fetch roster",
                is_retryable=_fetch_retryable,
                timeout=self.fetch_timeout,
                stop=self._stop,
                on_backoff=self._enter_backoff,
            )
        except FetchError as e:
            raise FatalError(f"Cannot fetch roster: {e.message}") from e
        except RetryExhaustedError as e:
            result.outcome = CycleOutcome.ABORTED if e.aborted else CycleOutcome.FETCH_FAILED
            result.errors.append(e.message)
            logger.error(f"Cycle {result.cycle} skipped: {e.message}")
            return None

    async def _persist(self, roster: Roster, result: CycleResult) -> bool:
        async def attempt() -> None:
            self._state = SchedulerState.PERSISTING
            if self._save_task is not None:
                # A write from a timed-out attempt is still running: never start a second writer.
                pending_roster = self._save_roster
                if await self._settle_save() and pending_roster == roster:
                    return
            self._save_roster = roster
            task = self._save_task = asyncio.ensure_future(
                asyncio.to_thread(self.store.save, roster)
            )
            try:
                await asyncio.shield(task)
            finally:
                if task.done():
                    self._save_task = None

        try:
            await self.persist_policy.call(
                attempt,
                operation="persist snapshot",
                is_retryable=_persist_retryable,
                timeout=self.persist_timeout,
                stop=self._stop,
                on_backoff=self._enter_backoff,
            )
        except RetryExhaustedError as e:
            pending_roster = self._save_roster
            if await self._settle_save() and pending_roster == roster:
                logger.warning(f"Cycle {result.cycle}: snapshot write finished after its timeout")
                return True
            if e.aborted:
                result.outcome = CycleOutcome.ABORTED
                result.errors.append(e.message)
                logger.warning(f"Cycle {result.cycle} aborted before its snapshot was saved")
                return False
            raise FatalError(
                f"Snapshot could not be persisted, refusing to continue: {e.message}"
            ) from e
        return True

    async def _settle_save(self) -> bool:
        """
        Wait for a snapshot write left running by a timed-out attempt.

        Returns:
            True if that write committed
        """
        task = self._save_task
        if task is None:
            return False
        if not task.done():
            logger.warning("Waiting for an earlier snapshot write to finish")
        try:
            await asyncio.shield(task)
        except StoreError as e:
            logger.warning(f"Earlier snapshot write failed: {e.message}")
            return False
        finally:
            if task.done():
                self._save_task = None
        return True

    async def _notify_all(self, events: list[MembershipEvent], result: CycleResult) -> None:
        self._state = SchedulerState.NOTIFYING

        if self.notify_concurrency == 1:
            outcomes = [await self._notify_one(event, result) for event in events]
        else:
            semaphore = asyncio.Semaphore(self.notify_concurrency)

            async def bounded(event: MembershipEvent) -> bool:
                async with semaphore:
                    return await self._notify_one(event, result)

            outcomes = await asyncio.gather(*(bounded(event) for event in events))

        result.delivered = sum(1 for ok in outcomes if ok)
        result.failed = len(outcomes) - result.delivered

    async def _notify_one(self, event: MembershipEvent, result: CycleResult) -> bool:
        async def attempt() -> None:
            self._state = SchedulerState.NOTIFYING
            await self.notifier.notify(event)

        try:
            await self.notify_policy.call(
                attempt,
                operation=f"notify {event}",
                is_retryable=_notify_retryable,
                timeout=self.notify_timeout,
                stop=self._stop,
                on_backoff=self._enter_backoff,
            )
        except RetryExhaustedError as e:
            result.errors.append(e.message)
            logger.error(f"Dropping notification {event}: {e.message}")
            return False
        return True

    def _enter_backoff(self, attempt: int, delay: float) -> None:
        self._state = SchedulerState.BACKOFF
