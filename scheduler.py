#!/usr/bin/env python3
"""
Interval scheduler for ingestion cycles.

Runs one cycle at start-up (unless disabled) and then one every
FETCH_INTERVAL_MINUTES. Cycles never overlap: a tick that finds a cycle still
running is skipped and logged, and an on-demand trigger is refused the same
way. A failing cycle is logged and the loop carries on.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from config import config, get_logger
from telemetry import trace_span
from utils import format_duration

# Module-specific logger
logger = get_logger("scheduler")

SECONDS_PER_MINUTE = 60


class IntervalScheduler:
    """Fixed-interval scheduler serializing calls to ``run_cycle``.

    Args:
        run_cycle: Coroutine function running one ingestion cycle and
            returning its report.
        interval_minutes: Minutes between ticks (default FETCH_INTERVAL_MINUTES).
        run_immediately: Run a cycle before the first sleep
            (default SCHEDULER_RUN_IMMEDIATELY).
    """

    def __init__(
        self,
        run_cycle: Callable[[], Awaitable[Dict[str, Any]]],
        interval_minutes: Optional[float] = None,
        run_immediately: Optional[bool] = None,
    ):
        self.run_cycle = run_cycle
        self.interval_minutes = interval_minutes or config.FETCH_INTERVAL_MINUTES
        self.run_immediately = config.SCHEDULER_RUN_IMMEDIATELY if run_immediately is None else run_immediately
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[Dict[str, Any]] = None
        self.last_run_at: Optional[datetime] = None
        self.ticks_skipped = 0
        self._pending: set = set()

    @property
    def interval_seconds(self) -> float:
        return float(self.interval_minutes) * SECONDS_PER_MINUTE

    @property
    def is_running(self) -> bool:
        """True while a cycle is in flight."""
        return self._lock.locked()

    async def _run_locked(self) -> Dict[str, Any]:
        async with self._lock:
            started = datetime.now(timezone.utc)
            report = await self.run_cycle()
            self.last_run_at = started
            self.last_report = report
            return report

    async def trigger(self) -> Optional[Dict[str, Any]]:
        """Run a cycle now unless one is already running.

        Returns:
            The cycle report, or None when a cycle was already in flight.
            Exceptions raised by the cycle propagate.
        """
        if self._lock.locked():
            logger.warning("On-demand cycle refused: a cycle is already running")
            return None
        return await self._run_locked()

    @trace_span("scheduler.tick", tracer_name="scheduler")
    async def tick(self) -> Optional[Dict[str, Any]]:
        """Run one scheduled cycle, logging instead of raising on failure."""
        if self._lock.locked():
            self.ticks_skipped += 1
            logger.warning("Skipping scheduled cycle: previous cycle still running")
            return None
        try:
            return await self._run_locked()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scheduled cycle failed: {e}")
            return None

    async def _sleep(self) -> bool:
        """Sleep one interval; returns False if stop() was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            return False
        except asyncio.TimeoutError:
            return True

    def _spawn_tick(self) -> None:
        task = asyncio.create_task(self.tick())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def run_forever(self) -> None:
        """Main scheduling loop; returns after stop()."""
        logger.info(
            f"Scheduler started: every {format_duration(self.interval_seconds)}, "
            f"run_immediately={self.run_immediately}"
        )
        if self.run_immediately:
            # Ticks run as tasks; the clock never waits on a cycle
            self._spawn_tick()

        while not self._stop_event.is_set():
            next_run = datetime.now(timezone.utc) + timedelta(seconds=self.interval_seconds)
            logger.debug(f"Next scheduled cycle at {next_run.isoformat()}")
            if not await self._sleep():
                break
            self._spawn_tick()

        logger.info("Scheduler stopped")

    def start(self) -> asyncio.Task:
        """Start the loop as a background task."""
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        """Stop the loop and wait for any in-flight cycle to finish."""
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def get_status(self) -> Dict[str, Any]:
        """Summarize scheduler state for the status command and logs."""
        return {
            'interval_minutes': self.interval_minutes,
            'cycle_running': self.is_running,
            'last_run_at': self.last_run_at.isoformat() if self.last_run_at else None,
            'ticks_skipped': self.ticks_skipped,
        }
