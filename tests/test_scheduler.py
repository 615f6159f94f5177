"""
Tests for the daily snapshot scheduler.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_row
from src.errors import NotSeededError
from src.realtime.scheduler import DailySnapshotScheduler
from src.snapshot.builder import SnapshotResult


class FakeBuilder:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def build_snapshot(self):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


FRESH = SnapshotResult(make_row("2024-01-08"), computed=True)
STALE = SnapshotResult(make_row("2024-01-05", stale=True, stale_reason="MISSING_CORE_SERIES: VIX"), stale=True)


def at(year, month, day, hour, minute=0):
    moment = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
    return lambda: moment


class MovingClock:
    def __init__(self, year, month, day, hour, minute=0):
        self.now = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class TestShouldRun:

    def test_before_run_time(self):
        scheduler = DailySnapshotScheduler(FakeBuilder(FRESH), clock=at(2024, 1, 8, 22, 29))
        assert scheduler.should_run() is False

    def test_after_run_time(self):
        scheduler = DailySnapshotScheduler(FakeBuilder(FRESH), clock=at(2024, 1, 8, 22, 30))
        assert scheduler.should_run() is True

    def test_weekend(self):
        scheduler = DailySnapshotScheduler(FakeBuilder(FRESH), clock=at(2024, 1, 6, 23))
        assert scheduler.should_run() is False

    def test_custom_run_time(self):
        scheduler = DailySnapshotScheduler(
            FakeBuilder(FRESH), run_after_utc="06:00", clock=at(2024, 1, 8, 7)
        )
        assert scheduler.should_run() is True

    def test_invalid_run_time(self):
        with pytest.raises(ValueError):
            DailySnapshotScheduler(FakeBuilder(FRESH), run_after_utc="25:00")


class TestRunOnce:

    @pytest.mark.asyncio
    async def test_fresh_run_closes_the_day(self):
        builder = FakeBuilder(FRESH)
        scheduler = DailySnapshotScheduler(builder, clock=at(2024, 1, 8, 23))

        await scheduler.run_once()

        assert builder.calls == 1
        assert scheduler.run_count == 1
        assert scheduler.should_run() is False
        assert scheduler.get_status()["last_run_date"] == "2024-01-08"

    @pytest.mark.asyncio
    async def test_stale_run_is_retried_after_backoff(self):
        clock = MovingClock(2024, 1, 8, 23)
        scheduler = DailySnapshotScheduler(FakeBuilder(STALE), stale_retry_seconds=900, clock=clock)

        await scheduler.run_once()

        assert scheduler.run_count == 1
        assert scheduler.get_status()["last_run_date"] is None
        assert scheduler.get_status()["stale_runs"] == 1
        assert scheduler.get_status()["next_retry_at"] == "2024-01-08T23:15:00+00:00"
        assert scheduler.should_run() is False

        clock.advance(minutes=14)
        assert scheduler.should_run() is False
        clock.advance(minutes=1)
        assert scheduler.should_run() is True

    @pytest.mark.asyncio
    async def test_backoff_doubles(self):
        clock = MovingClock(2024, 1, 8, 22, 30)
        scheduler = DailySnapshotScheduler(
            FakeBuilder(STALE), stale_retry_seconds=600, max_stale_runs=5, clock=clock
        )

        waits = []
        for _ in range(3):
            await scheduler.run_once()
            retry_at = datetime.fromisoformat(scheduler.get_status()["next_retry_at"])
            waits.append((retry_at - clock()).total_seconds())
            clock.now = retry_at

        assert waits == [600, 1200, 2400]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_stale_runs(self):
        clock = MovingClock(2024, 1, 8, 22, 30)
        builder = FakeBuilder(STALE)
        scheduler = DailySnapshotScheduler(
            builder, stale_retry_seconds=60, max_stale_runs=3, clock=clock
        )

        for _ in range(10):
            if scheduler.should_run():
                await scheduler.run_once()
            clock.advance(minutes=5)

        assert builder.calls == 3
        assert scheduler.get_status()["last_run_date"] == "2024-01-08"
        assert scheduler.get_status()["next_retry_at"] is None

        # The next business day starts fresh
        clock.now = datetime(2024, 1, 9, 23, 0, tzinfo=timezone.utc)
        assert scheduler.should_run() is True

    @pytest.mark.asyncio
    async def test_fresh_run_clears_backoff(self):
        clock = MovingClock(2024, 1, 8, 23)
        builder = FakeBuilder(STALE, FRESH)
        scheduler = DailySnapshotScheduler(builder, stale_retry_seconds=60, clock=clock)

        await scheduler.run_once()
        clock.advance(minutes=1)
        await scheduler.run_once()

        status = scheduler.get_status()
        assert status["last_run_date"] == "2024-01-08"
        assert status["stale_runs"] == 0
        assert status["next_retry_at"] is None

    def test_invalid_max_stale_runs(self):
        with pytest.raises(ValueError):
            DailySnapshotScheduler(FakeBuilder(FRESH), max_stale_runs=0)

    @pytest.mark.asyncio
    async def test_engine_error_is_counted(self):
        scheduler = DailySnapshotScheduler(
            FakeBuilder(NotSeededError("seed.csv")), clock=at(2024, 1, 8, 23)
        )

        await scheduler.run_once()

        assert scheduler.error_count == 1
        assert scheduler.run_count == 0
        assert scheduler.should_run() is True


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_runs_and_stop(self):
        builder = FakeBuilder(FRESH)
        scheduler = DailySnapshotScheduler(builder, poll_seconds=60, clock=at(2024, 1, 8, 23))

        await scheduler.start()
        assert scheduler.is_running
        for _ in range(50):
            if builder.calls:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert builder.calls == 1
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_double_start_is_ignored(self):
        scheduler = DailySnapshotScheduler(
            FakeBuilder(FRESH), poll_seconds=60, clock=at(2024, 1, 6, 23)
        )
        await scheduler.start()
        first_task = scheduler._task
        await scheduler.start()
        assert scheduler._task is first_task
        await scheduler.stop()

    def test_status_shape(self):
        status = DailySnapshotScheduler(FakeBuilder(FRESH), poll_seconds=30).get_status()
        assert status["run_after_utc"] == "22:30"
        assert status["poll_seconds"] == 30
        assert status["is_running"] is False
        assert status["run_count"] == 0
