"""
Unit Tests for the Polling Scheduler

These tests verify that:
- start() runs a cycle immediately and then on the interval
- retry() runs out of band without moving the schedule baseline
- stop() discards results that arrive afterwards
- failed results are retried a bounded number of times
- a scheduled tick never overlaps the previous scheduled cycle

Run with:
    pytest tests/unit/test_polling.py -v
"""

import asyncio

import pytest

from services.polling import PollHandle, PollingScheduler


class Recorder:
    """Fetch/on_result pair counting calls."""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.fetches = 0
        self.applied = []
        self.gate = None

    async def fetch(self):
        self.fetches += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.results:
            return self.results.pop(0)
        return f"result-{self.fetches}"

    def on_result(self, result):
        self.applied.append(result)


# ============================================
# Start / Interval
# ============================================

class TestStart:
    """Tests for start() and the interval timer"""

    @pytest.mark.asyncio
    async def test_start_runs_immediately(self):
        rec = Recorder()
        handle = PollHandle("test", rec.fetch, rec.on_result, interval=60)

        handle.start()
        await asyncio.wait_for(handle.first_result.wait(), timeout=1)

        assert rec.applied == ["result-1"]
        assert handle.cycles == 1
        handle.stop()

    @pytest.mark.asyncio
    async def test_cycles_repeat_on_interval(self):
        rec = Recorder()
        handle = PollHandle("test", rec.fetch, rec.on_result, interval=0.05)

        handle.start()
        await asyncio.sleep(0.18)
        handle.stop()

        assert rec.fetches >= 3

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self):
        rec = Recorder()
        handle = PollHandle("test", rec.fetch, rec.on_result, interval=60)

        handle.start()
        generation = handle.generation
        handle.start()
        await handle.wait_idle()

        assert handle.generation == generation
        assert rec.fetches == 1
        handle.stop()

    @pytest.mark.asyncio
    async def test_async_on_result_is_awaited(self):
        applied = []

        async def fetch():
            return 1

        async def on_result(result):
            await asyncio.sleep(0)
            applied.append(result)

        handle = PollHandle("test", fetch, on_result, interval=60)
        handle.start()
        await asyncio.wait_for(handle.first_result.wait(), timeout=1)

        assert applied == [1]
        handle.stop()

    def test_invalid_interval_rejected(self):
        with pytest.raises(ValueError):
            PollHandle("test", Recorder().fetch, print, interval=0)


# ============================================
# Manual Retry
# ============================================

class TestRetry:
    """Tests for retry()"""

    @pytest.mark.asyncio
    async def test_retry_fires_without_moving_baseline(self):
        """Manual retry mid-interval fires immediately; the next tick stays where it was"""
        rec = Recorder()
        handle = PollHandle("test", rec.fetch, rec.on_result, interval=30)

        handle.start()
        await asyncio.wait_for(handle.first_result.wait(), timeout=1)
        baseline = handle.next_run_at

        task = handle.retry()
        await asyncio.wait_for(task, timeout=1)

        assert rec.fetches == 2
        assert rec.applied == ["result-1", "result-2"]
        assert handle.next_run_at == baseline
        handle.stop()

    @pytest.mark.asyncio
    async def test_retry_while_stopped_is_ignored(self):
        rec = Recorder()
        handle = PollHandle("test", rec.fetch, rec.on_result, interval=30)

        assert handle.retry() is None
        assert rec.fetches == 0


# ============================================
# Stop / Cancellation
# ============================================

class TestStop:
    """Tests for stop() and late results"""

    @pytest.mark.asyncio
    async def test_late_result_after_stop_is_discarded(self):
        rec = Recorder()
        rec.gate = asyncio.Event()
        handle = PollHandle("test", rec.fetch, rec.on_result, interval=30)

        handle.start()
        await asyncio.sleep(0)
        assert rec.fetches == 1

        handle.stop()
        rec.gate.set()
        await handle.wait_idle()

        assert rec.applied == []
        assert handle.last_result is None
        assert not handle.first_result.is_set()

    @pytest.mark.asyncio
    async def test_stop_with_cancel_inflight_cancels_fetch(self):
        rec = Recorder()
        rec.gate = asyncio.Event()
        handle = PollHandle("test", rec.fetch, rec.on_result, interval=30)

        handle.start()
        await asyncio.sleep(0)
        handle.stop(cancel_inflight=True)
        await handle.wait_idle()

        assert handle.in_flight == 0
        assert rec.applied == []
        assert handle.last_exception is None

    @pytest.mark.asyncio
    async def test_stop_halts_timer(self):
        rec = Recorder()
        handle = PollHandle("test", rec.fetch, rec.on_result, interval=0.02)

        handle.start()
        await handle.wait_idle()
        handle.stop()
        fetches = rec.fetches
        await asyncio.sleep(0.1)

        assert rec.fetches == fetches
        assert handle.next_run_at is None
        assert not handle.running

    @pytest.mark.asyncio
    async def test_restart_after_stop(self):
        rec = Recorder()
        handle = PollHandle("test", rec.fetch, rec.on_result, interval=30)

        handle.start()
        await handle.wait_idle()
        handle.stop()
        handle.start()
        await handle.wait_idle()

        assert rec.applied == ["result-1", "result-2"]
        handle.stop()


# ============================================
# Bounded Auto-Retry
# ============================================

class TestAutoRetry:
    """Tests for max_retry_attempts / should_retry"""

    @pytest.mark.asyncio
    async def test_failed_cycle_retried_up_to_limit(self):
        rec = Recorder(["fail"] * 10)
        handle = PollHandle(
            "test", rec.fetch, rec.on_result, interval=30,
            max_retry_attempts=2, retry_delay=0,
            should_retry=lambda r: r == "fail",
        )

        handle.start()
        await handle.wait_idle()

        assert rec.fetches == 3
        # Every attempt is applied so consumers can fall back immediately
        assert rec.applied == ["fail", "fail", "fail"]
        handle.stop()

    @pytest.mark.asyncio
    async def test_retry_stops_after_success(self):
        rec = Recorder(["fail", "ok"])
        handle = PollHandle(
            "test", rec.fetch, rec.on_result, interval=30,
            max_retry_attempts=3, retry_delay=0,
            should_retry=lambda r: r == "fail",
        )

        handle.start()
        await handle.wait_idle()

        assert rec.applied == ["fail", "ok"]
        handle.stop()

    @pytest.mark.asyncio
    async def test_retry_delay_is_fixed(self):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        rec = Recorder(["fail"] * 5)
        handle = PollHandle(
            "test", rec.fetch, rec.on_result, interval=30,
            max_retry_attempts=3, retry_delay=5.0,
            should_retry=lambda r: r == "fail", sleep=fake_sleep,
        )

        handle.start()
        await handle.wait_idle()
        handle.stop()

        assert delays[:3] == [5.0, 5.0, 5.0]

    @pytest.mark.asyncio
    async def test_no_retry_without_predicate(self):
        rec = Recorder(["fail"])
        handle = PollHandle("test", rec.fetch, rec.on_result, interval=30, max_retry_attempts=3, retry_delay=0)

        handle.start()
        await handle.wait_idle()

        assert rec.fetches == 1
        handle.stop()


# ============================================
# Overlap / Errors
# ============================================

class TestOverlapAndErrors:
    """Tests for tick skipping and unexpected exceptions"""

    @pytest.mark.asyncio
    async def test_tick_skipped_while_cycle_in_flight(self):
        rec = Recorder()
        rec.gate = asyncio.Event()
        handle = PollHandle("test", rec.fetch, rec.on_result, interval=0.02)

        handle.start()
        await asyncio.sleep(0.1)

        assert rec.fetches == 1
        assert handle.in_flight == 1

        rec.gate.set()
        handle.stop()
        await handle.wait_idle()

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_kept_and_timer_survives(self):
        calls = []

        async def fetch():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("bug in adapter")
            return "ok"

        applied = []
        handle = PollHandle("test", fetch, applied.append, interval=0.03)

        handle.start()
        await asyncio.sleep(0)
        await handle.wait_idle()
        assert isinstance(handle.last_exception, RuntimeError)

        await asyncio.wait_for(handle.first_result.wait(), timeout=1)
        assert applied[0] == "ok"
        handle.stop()


# ============================================
# Scheduler Registry
# ============================================

class TestPollingScheduler:
    """Tests for the named handle registry"""

    @pytest.mark.asyncio
    async def test_schedule_replaces_and_stops_existing(self):
        scheduler = PollingScheduler()
        rec = Recorder()

        first = scheduler.schedule("market.rest", rec.fetch, rec.on_result, interval=30)
        first.start()
        second = scheduler.schedule("market.rest", rec.fetch, rec.on_result, interval=30)

        assert not first.running
        assert scheduler.get("market.rest") is second
        assert len(scheduler) == 1
        await first.wait_idle()

    @pytest.mark.asyncio
    async def test_start_retry_stop_all(self):
        scheduler = PollingScheduler()
        a, b = Recorder(), Recorder()
        scheduler.schedule("a", a.fetch, a.on_result, interval=30)
        scheduler.schedule("b", b.fetch, b.on_result, interval=30)

        scheduler.start_all()
        await scheduler.wait_idle()
        tasks = scheduler.retry_all()
        await asyncio.gather(*tasks)
        scheduler.stop_all()

        assert len(tasks) == 2
        assert a.fetches == 2 and b.fetches == 2
        assert all(not handle.running for handle in scheduler.handles.values())

    @pytest.mark.asyncio
    async def test_unschedule(self):
        scheduler = PollingScheduler()
        rec = Recorder()
        handle = scheduler.schedule("x", rec.fetch, rec.on_result, interval=30)
        handle.start()

        scheduler.unschedule("x", cancel_inflight=True)

        assert scheduler.get("x") is None
        assert not handle.running
        await handle.wait_idle()
