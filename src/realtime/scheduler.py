"""
Daily snapshot scheduler for GhostRegime.

Runs the snapshot builder once per business day, after the US close
has settled, inside the API process.

Architecture:
    ┌──────────┐  poll   ┌──────────────┐  commit  ┌──────────────┐
    │ Scheduler│ ──────→ │ Snapshot     │ ───────→ │ History      │
    │ (asyncio)│  every  │ Builder      │          │ Store        │
    └──────────┘  N sec  └──────────────┘          └──────────────┘

Features:
    - Weekdays only, once per UTC date
    - Stale runs retried with exponential backoff, capped per date
    - Runs after a configurable UTC time (default 22:30)
    - Builder runs in a worker thread so the event loop stays responsive
    - Graceful start / stop with asyncio Task

Classes:
    DailySnapshotScheduler: Once-a-day builder runner.

Example:
    >>> scheduler = DailySnapshotScheduler(builder, run_after_utc="22:30")
    >>> await scheduler.start()
    >>> await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from src.errors import GhostRegimeError

logger = logging.getLogger(__name__)


def _parse_hhmm(value: str) -> tuple:
    hours, minutes = value.split(":")
    hours, minutes = int(hours), int(minutes)
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Invalid HH:MM time: {value}")
    return hours, minutes


class DailySnapshotScheduler:
    """Once-per-business-day snapshot runner.

    Args:
        builder: SnapshotBuilder (anything with ``build_snapshot()``).
        run_after_utc: Earliest UTC time of day for the run ("HH:MM").
        poll_seconds: Seconds between checks.
        stale_retry_seconds: Wait after the first stale run; doubles each retry.
        max_stale_runs: Stale runs allowed per date before giving up until
            the next business day.
        clock: Returns the current UTC datetime.
    """

    def __init__(
        self,
        builder: Any,
        run_after_utc: str = "22:30",
        poll_seconds: int = 300,
        stale_retry_seconds: int = 900,
        max_stale_runs: int = 4,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if max_stale_runs < 1:
            raise ValueError("max_stale_runs must be at least 1")
        self._builder = builder
        self._run_after = _parse_hhmm(run_after_utc)
        self._poll = poll_seconds
        self._stale_retry = stale_retry_seconds
        self._max_stale_runs = max_stale_runs
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._task: Optional[asyncio.Task] = None
        self._is_running = False
        self._last_run_date: Optional[date] = None
        self._run_count = 0
        self._error_count = 0
        self._last_run_time: Optional[float] = None
        self._stale_date: Optional[date] = None
        self._stale_runs = 0
        self._next_retry_at: Optional[datetime] = None

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Start the polling loop."""
        if self._is_running:
            logger.warning("Scheduler already running")
            return
        self._is_running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            f"Snapshot scheduler started (run_after_utc="
            f"{self._run_after[0]:02d}:{self._run_after[1]:02d}, poll={self._poll}s)"
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        self._is_running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info(f"Snapshot scheduler stopped after {self._run_count} runs")

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def run_count(self) -> int:
        return self._run_count

    @property
    def error_count(self) -> int:
        return self._error_count

    # ── Core loop ─────────────────────────────────────────────

    async def _loop(self) -> None:
        while self._is_running:
            try:
                if self.should_run():
                    await self.run_once()
                await asyncio.sleep(self._poll)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                self._error_count += 1
                logger.error(f"Scheduler loop error: {exc}", exc_info=True)
                await asyncio.sleep(min(self._poll, 60))

    def should_run(self) -> bool:
        """Weekday, past the run time, not yet run today, not backing off."""
        now = self._clock()
        if now.weekday() >= 5:
            return False
        if (now.hour, now.minute) < self._run_after:
            return False
        if self._last_run_date == now.date():
            return False
        if self._stale_date == now.date() and self._next_retry_at and now < self._next_retry_at:
            return False
        return True

    async def run_once(self) -> None:
        """Execute a single build in a worker thread."""
        start = time.monotonic()
        now = self._clock()
        today = now.date()
        try:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, self._builder.build_snapshot)
            elapsed = time.monotonic() - start
            self._run_count += 1
            self._last_run_time = time.time()

            if result.stale:
                self._record_stale(now, result)
            else:
                self._last_run_date = today
                self._stale_date = None
                self._stale_runs = 0
                self._next_retry_at = None
                logger.info(
                    f"Snapshot run #{self._run_count} completed in {elapsed:.2f}s: "
                    f"{result.row.date} {result.row.regime}"
                )

        except GhostRegimeError as exc:
            self._error_count += 1
            logger.warning(f"Snapshot run failed ({exc.code}): {exc.message}")

    def _record_stale(self, now: datetime, result: Any) -> None:
        """Back off before the next retry, or close the date once the cap is hit."""
        today = now.date()
        if self._stale_date != today:
            self._stale_date = today
            self._stale_runs = 0
        self._stale_runs += 1

        if self._stale_runs >= self._max_stale_runs:
            self._last_run_date = today
            self._next_retry_at = None
            logger.error(
                f"Snapshot for {today.isoformat()} still stale after {self._stale_runs} runs "
                f"({result.row.stale_reason}); giving up until the next business day"
            )
            return

        delay = self._stale_retry * 2 ** (self._stale_runs - 1)
        self._next_retry_at = now + timedelta(seconds=delay)
        logger.warning(
            f"Snapshot run #{self._run_count} served stale row {result.row.date}: "
            f"{result.row.stale_reason}; retry {self._stale_runs}/{self._max_stale_runs - 1} "
            f"after {self._next_retry_at.isoformat()}"
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self._is_running,
            "run_after_utc": f"{self._run_after[0]:02d}:{self._run_after[1]:02d}",
            "poll_seconds": self._poll,
            "run_count": self._run_count,
            "error_count": self._error_count,
            "last_run_date": self._last_run_date.isoformat() if self._last_run_date else None,
            "last_run_time": self._last_run_time,
            "stale_runs": self._stale_runs,
            "next_retry_at": self._next_retry_at.isoformat() if self._next_retry_at else None,
        }
