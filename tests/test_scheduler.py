"""
Tests for the poll scheduler.

These tests verify the cycle contract end to end with in-memory fakes:
- Baseline establishment is silent
- Persist happens before notify, and a restart never re-sends events
- Fetch, persist and notify failures are handled per the error taxonomy
- Shutdown interrupts waits without partial persistence
"""

import asyncio
import threading

import pytest

from alliance_watch.core.errors import FatalError, FetchError
from alliance_watch.core.models import EventKind
from alliance_watch.core.retry import RetryPolicy
from alliance_watch.scheduler import (
    CycleOutcome,
    CycleResult,
    PollScheduler,
    SchedulerState,
)
from alliance_watch.state import JsonStateStore

from .conftest import ALLIANCE_ID, MemoryStore, RecordingNotifier, ScriptedSource


def kinds_and_ids(events):
    return [(e.kind, e.corporation_id) for e in events]


class Crash(BaseException):
    """Stands in for the process dying mid-cycle."""


class CrashingNotifier(RecordingNotifier):
    async def notify(self, event):
        raise Crash()


class HangingJsonStore(JsonStateStore):
    """Real snapshot store whose first save hangs until ``release`` is set."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.release = threading.Event()
        self.writers = 0
        self.max_writers = 0
        self._hang = True
        self._count_lock = threading.Lock()

    def save(self, roster):
        with self._count_lock:
            self.writers += 1
            self.max_writers = max(self.max_writers, self.writers)
        try:
            if self._hang:
                self._hang = False
                self.release.wait(5)
            super().save(roster)
        finally:
            with self._count_lock:
                self.writers -= 1


class TestBaseline:
    """First cycle after a first-ever start."""

    async def test_first_cycle_is_silent(self, make_scheduler):
        store = MemoryStore()
        notifier = RecordingNotifier()
        scheduler = make_scheduler(ScriptedSource({10, 20, 30}), store, notifier)

        result = await scheduler.run_cycle()

        assert result.outcome is CycleOutcome.BASELINE
        assert result.events == []
        assert notifier.attempts == []
        assert store.saves == [frozenset({10, 20, 30})]
        assert scheduler.roster == frozenset({10, 20, 30})

    async def test_start_loads_persisted_roster(self, make_scheduler):
        store = MemoryStore({1, 2})
        scheduler = make_scheduler(ScriptedSource({1, 2}), store, RecordingNotifier())

        scheduler.start()

        assert scheduler.roster == frozenset({1, 2})
        assert scheduler.state is SchedulerState.IDLE


class TestTransitions:
    """Join/leave detection across cycles."""

    async def test_join_and_leave_reported_once(self, make_scheduler):
        source = ScriptedSource({10, 20, 30}, {20, 30, 40, 50}, {20, 30, 40, 50})
        notifier = RecordingNotifier()
        scheduler = make_scheduler(source, MemoryStore(), notifier)

        first = await scheduler.run_cycle()
        second = await scheduler.run_cycle()
        third = await scheduler.run_cycle()

        assert first.outcome is CycleOutcome.BASELINE
        assert kinds_and_ids(second.events) == [
            (EventKind.LEFT, 10),
            (EventKind.JOINED, 40),
            (EventKind.JOINED, 50),
        ]
        assert third.events == []
        assert kinds_and_ids(notifier.delivered) == kinds_and_ids(second.events)
        assert second.delivered == 3
        assert second.failed == 0

    async def test_unchanged_roster_still_persists(self, make_scheduler):
        store = MemoryStore({1, 2})
        scheduler = make_scheduler(ScriptedSource({1, 2}), store, RecordingNotifier())

        result = await scheduler.run_cycle()

        assert result.outcome is CycleOutcome.COMPLETED
        assert store.saves == [frozenset({1, 2})]

    async def test_roster_loaded_once(self, make_scheduler):
        store = MemoryStore({1})
        scheduler = make_scheduler(ScriptedSource({1}, {1, 2}, {2}), store, RecordingNotifier())

        for _ in range(3):
            await scheduler.run_cycle()

        assert store.loads == 1

    async def test_events_carry_alliance(self, make_scheduler):
        notifier = RecordingNotifier()
        scheduler = make_scheduler(ScriptedSource({2}), MemoryStore({1}), notifier)

        await scheduler.run_cycle()

        assert {e.alliance_id for e in notifier.delivered} == {ALLIANCE_ID}


class TestPersistBeforeNotify:
    """No duplicate notifications across crash and restart."""

    async def test_snapshot_saved_before_first_notify(self, make_scheduler):
        store = MemoryStore({1, 2, 3})
        notifier = RecordingNotifier(store=store)
        scheduler = make_scheduler(ScriptedSource({2, 3, 4}), store, notifier)

        await scheduler.run_cycle()

        assert notifier.persisted_before_notify == [True, True]

    async def test_crash_between_persist_and_notify_does_not_resend(self, make_scheduler):
        r1, r2 = {1, 2, 3}, {2, 3, 4}
        store = MemoryStore(r1)
        crashed = make_scheduler(ScriptedSource(r2), store, CrashingNotifier())

        with pytest.raises(Crash):
            await crashed.run_cycle()
        assert store.roster == frozenset(r2)

        notifier = RecordingNotifier()
        restarted = make_scheduler(ScriptedSource(r2), store, notifier)
        result = await restarted.run_cycle()

        assert result.events == []
        assert notifier.attempts == []

    async def test_persist_retried_then_notifies(self, make_scheduler):
        store = MemoryStore({1}, fail_saves=2)
        notifier = RecordingNotifier()
        scheduler = make_scheduler(ScriptedSource({1, 2}), store, notifier)

        result = await scheduler.run_cycle()

        assert result.outcome is CycleOutcome.COMPLETED
        assert kinds_and_ids(notifier.delivered) == [(EventKind.JOINED, 2)]

    async def test_persist_exhaustion_is_fatal_and_silent(self, make_scheduler):
        store = MemoryStore({1}, fail_saves=10)
        notifier = RecordingNotifier()
        scheduler = make_scheduler(ScriptedSource({1, 2}), store, notifier)

        with pytest.raises(FatalError, match="persisted"):
            await scheduler.run_cycle()

        assert notifier.attempts == []
        assert scheduler.roster == frozenset({1})

    async def test_timed_out_save_never_races_a_newer_one(self, make_scheduler, tmp_path):
        path = tmp_path / "roster.json"
        store = HangingJsonStore(path, alliance_id=ALLIANCE_ID)
        notifier = RecordingNotifier()
        scheduler = make_scheduler(
            ScriptedSource({1, 2}, {1, 2, 3}),
            store,
            notifier,
            persist_timeout=0.05,
        )

        first = asyncio.create_task(scheduler.run_cycle())
        await asyncio.sleep(0.3)
        assert not first.done()
        assert store.max_writers == 1

        store.release.set()
        result = await asyncio.wait_for(first, timeout=5)
        assert result.outcome is CycleOutcome.BASELINE

        await scheduler.run_cycle()

        on_disk = JsonStateStore(path, alliance_id=ALLIANCE_ID).load()
        assert on_disk == scheduler.roster == frozenset({1, 2, 3})
        assert store.max_writers == 1
        assert kinds_and_ids(notifier.delivered) == [(EventKind.JOINED, 3)]

    async def test_unexpected_store_bug_propagates(self, make_scheduler):
        class BrokenStore(MemoryStore):
            def save(self, roster):
                raise TypeError("bug")

        scheduler = make_scheduler(ScriptedSource({2}), BrokenStore({1}), RecordingNotifier())

        with pytest.raises(TypeError):
            await scheduler.run_cycle()


class TestFetchFailures:
    """Upstream errors: retried when transient, fatal otherwise."""

    async def test_transient_failure_retried(self, make_scheduler, fetch_unavailable):
        source = ScriptedSource(fetch_unavailable, {1, 2})
        notifier = RecordingNotifier()
        scheduler = make_scheduler(source, MemoryStore({1}), notifier)

        result = await scheduler.run_cycle()

        assert source.calls == 2
        assert result.outcome is CycleOutcome.COMPLETED
        assert len(notifier.delivered) == 1

    async def test_exhausted_fetch_skips_cycle(self, make_scheduler, fetch_unavailable):
        store = MemoryStore({1})
        source = ScriptedSource(fetch_unavailable, fetch_unavailable, fetch_unavailable, {1, 5})
        notifier = RecordingNotifier()
        scheduler = make_scheduler(source, store, notifier)

        failed = await scheduler.run_cycle()

        assert failed.outcome is CycleOutcome.FETCH_FAILED
        assert failed.errors
        assert store.saves == []
        assert scheduler.roster == frozenset({1})

        recovered = await scheduler.run_cycle()
        assert kinds_and_ids(recovered.events) == [(EventKind.JOINED, 5)]

    async def test_fatal_fetch_stops(self, make_scheduler):
        store = MemoryStore({1})
        source = ScriptedSource(FetchError("HTTP 404", retryable=False, status_code=404))
        scheduler = make_scheduler(source, store, RecordingNotifier())

        with pytest.raises(FatalError):
            await scheduler.run_cycle()

        assert source.calls == 1
        assert store.saves == []

    async def test_unexpected_source_error_is_retried(self, make_scheduler):
        source = ScriptedSource(RuntimeError("boom"), {1})
        scheduler = make_scheduler(source, MemoryStore({1}), RecordingNotifier())

        result = await scheduler.run_cycle()

        assert result.outcome is CycleOutcome.COMPLETED

    async def test_fetch_timeout_is_retryable(self, make_scheduler):
        class SlowSource(ScriptedSource):
            async def fetch(self):
                self.calls += 1
                await asyncio.sleep(10)

        source = SlowSource()
        scheduler = make_scheduler(source, MemoryStore({1}), RecordingNotifier(), fetch_timeout=0.02)

        result = await scheduler.run_cycle()

        assert result.outcome is CycleOutcome.FETCH_FAILED
        assert source.calls == 3

    async def test_backoff_state_while_waiting(self, make_scheduler, fetch_unavailable):
        policy = RetryPolicy(max_attempts=2, base_delay=0.3, max_delay=0.3)
        scheduler = make_scheduler(
            ScriptedSource(fetch_unavailable, {1}),
            MemoryStore({1}),
            RecordingNotifier(),
            fetch_policy=policy,
        )

        task = asyncio.create_task(scheduler.run_cycle())
        await asyncio.sleep(0.1)
        assert scheduler.state is SchedulerState.BACKOFF

        result = await task
        assert result.outcome is CycleOutcome.COMPLETED
        assert scheduler.state is SchedulerState.IDLE


class TestNotifyFailures:
    """Per-event retry; one bad event never blocks the others."""

    async def test_failed_event_dropped_others_delivered(self, make_scheduler):
        notifier = RecordingNotifier(failing={1})
        scheduler = make_scheduler(ScriptedSource({3, 5}), MemoryStore({1, 2, 3}), notifier)

        result = await scheduler.run_cycle()

        assert kinds_and_ids(notifier.delivered) == [(EventKind.LEFT, 2), (EventKind.JOINED, 5)]
        assert [e.corporation_id for e in notifier.attempts].count(1) == 3
        assert result.delivered == 2
        assert result.failed == 1
        assert result.outcome is CycleOutcome.COMPLETED

    async def test_dropped_event_not_requeued(self, make_scheduler):
        notifier = RecordingNotifier(failing={1})
        scheduler = make_scheduler(ScriptedSource({2}, {2}), MemoryStore({1, 2}), notifier)

        await scheduler.run_cycle()
        notifier.failing.clear()
        second = await scheduler.run_cycle()

        assert second.events == []
        assert notifier.delivered == []

    async def test_bounded_concurrency_keeps_start_order(self, make_scheduler):
        notifier = RecordingNotifier()
        scheduler = make_scheduler(
            ScriptedSource({4, 5, 6}),
            MemoryStore({1, 2, 3}),
            notifier,
            notify_concurrency=2,
        )

        result = await scheduler.run_cycle()

        assert [e.corporation_id for e in notifier.attempts] == [1, 2, 3, 4, 5, 6]
        assert result.delivered == 6


class TestShutdown:
    """Cooperative cancellation."""

    async def test_stop_interrupts_interval_wait(self, make_scheduler):
        source = ScriptedSource({1})
        scheduler = make_scheduler(source, MemoryStore(), RecordingNotifier(), interval=3600)

        task = asyncio.create_task(scheduler.run())
        while source.calls < 1:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=2)

        assert scheduler.state is SchedulerState.STOPPED
        assert source.calls == 1

    async def test_stop_before_persist_aborts_cycle(self, make_scheduler):
        store = MemoryStore({1})
        notifier = RecordingNotifier()
        scheduler = None

        class StoppingSource(ScriptedSource):
            async def fetch(self):
                scheduler.stop()
                return frozenset({1, 2})

        scheduler = make_scheduler(StoppingSource(), store, notifier)
        result = await scheduler.run_cycle()

        assert result.outcome is CycleOutcome.ABORTED
        assert store.saves == []
        assert notifier.attempts == []
        assert scheduler.roster == frozenset({1})

    async def test_stop_during_notify_skips_backoff(self, make_scheduler):
        store = MemoryStore({1})
        slow_policy = RetryPolicy(max_attempts=5, base_delay=30, max_delay=30)
        scheduler = None

        class StoppingNotifier(RecordingNotifier):
            async def notify(self, event):
                scheduler.stop()
                await super().notify(event)

        notifier = StoppingNotifier(failing={2, 3})
        scheduler = make_scheduler(
            ScriptedSource({1, 2, 3}), store, notifier, notify_policy=slow_policy
        )

        result = await asyncio.wait_for(scheduler.run_cycle(), timeout=2)

        assert [e.corporation_id for e in notifier.attempts] == [2, 3]
        assert result.failed == 2
        assert store.saves == [frozenset({1, 2, 3})]

    async def test_run_respects_max_cycles(self, make_scheduler):
        source = ScriptedSource({1}, {1, 2})
        notifier = RecordingNotifier()
        scheduler = make_scheduler(source, MemoryStore(), notifier, interval=0.01)

        await asyncio.wait_for(scheduler.run(max_cycles=2), timeout=2)

        assert source.calls == 2
        assert kinds_and_ids(notifier.delivered) == [(EventKind.JOINED, 2)]


class TestConstruction:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            PollScheduler(ScriptedSource(set()), MemoryStore(), RecordingNotifier(), interval=0)

    def test_cycle_result_to_dict(self):
        data = CycleResult(cycle=1).to_dict()
        assert data["outcome"] == "aborted"
        assert data["events"] == []
