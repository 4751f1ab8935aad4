"""Tests for statesync.timers: debounce semantics on a virtual clock."""

import asyncio

import pytest

from statesync.timers import AsyncioScheduler, DebounceTimer


@pytest.fixture
def fired():
    return []


@pytest.fixture
def timer(scheduler, fired):
    return DebounceTimer("local-save", 1.0, lambda: fired.append(scheduler.now), scheduler)


class TestDebounceTimer:
    def test_fires_after_delay(self, timer, scheduler, fired):
        timer.reset()

        scheduler.advance(0.75)
        assert fired == []
        scheduler.advance(0.25)
        assert fired == [1.0]

    def test_reset_restarts_quiet_period(self, timer, scheduler, fired):
        timer.reset()
        scheduler.advance(0.5)
        timer.reset()
        scheduler.advance(0.5)
        timer.reset()
        scheduler.advance(0.5)

        assert fired == []
        scheduler.advance(0.5)
        assert fired == [2.0]

    def test_at_most_one_pending(self, timer, scheduler):
        for _ in range(5):
            timer.reset()

        assert scheduler.pending == 1
        assert timer.pending

    def test_cancel(self, timer, scheduler, fired):
        timer.reset()

        assert timer.cancel() is True
        assert timer.cancel() is False
        assert not timer.pending

        scheduler.advance(5)
        assert fired == []

    def test_not_pending_after_fire(self, timer, scheduler):
        timer.reset()
        scheduler.advance(1.0)

        assert not timer.pending
        assert timer.cancel() is False

    def test_can_be_rescheduled_from_callback(self, scheduler):
        calls = []

        def callback():
            calls.append(scheduler.now)
            if len(calls) < 3:
                t.reset()

        t = DebounceTimer("repeat", 2.0, callback, scheduler)
        t.reset()
        scheduler.advance(10)

        assert calls == [2.0, 4.0, 6.0]


class TestAsyncioScheduler:
    @pytest.mark.asyncio
    async def test_runs_on_event_loop(self):
        done = asyncio.Event()
        timer = DebounceTimer("real", 0.01, done.set, AsyncioScheduler())

        timer.reset()

        await asyncio.wait_for(done.wait(), timeout=1.0)
        assert not timer.pending

    @pytest.mark.asyncio
    async def test_cancelled_never_fires(self):
        calls = []
        timer = DebounceTimer("real", 0.01, lambda: calls.append(1), AsyncioScheduler())

        timer.reset()
        timer.cancel()
        await asyncio.sleep(0.05)

        assert calls == []

    def test_no_running_loop_leaves_timer_idle(self):
        calls = []
        timer = DebounceTimer("real", 0.01, lambda: calls.append(1), AsyncioScheduler())

        timer.reset()

        assert not timer.pending
        assert timer.cancel() is False
        assert calls == []
