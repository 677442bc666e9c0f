"""Daily cycle background task."""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quotagate.config import settings
from quotagate.engine import DailySweeper, DistributionEngine
from quotagate.integrations.notifier import Notifier
from quotagate.models import DistributionResult, ResetResult
from quotagate.utils.time import next_occurrence, utc_now

logger = logging.getLogger("quotagate.scheduler")


async def run_daily_cycle(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> tuple[ResetResult, DistributionResult]:
    """Reset day-boundary state, then distribute. Reset always runs first."""
    reset = await DailySweeper(session_factory).reset_daily_state(now)
    distribution = await DistributionEngine(session_factory, notifier).assign_daily_tasks(now)
    return reset, distribution


class DailyScheduler:
    """
    Runs the daily cycle at ``scheduler_run_at`` in ``day_timezone``.

    The loop sleeps in chunks of at most ``scheduler_poll_cap_seconds`` so a
    clock jump or DST change is noticed, and wakes immediately on stop().
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[Notifier] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._shutdown_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._shutdown_event:
            self._shutdown_event.set()

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=10.0)
            except asyncio.TimeoutError:
                logger.warning("Scheduler did not stop gracefully, cancelling")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass

        self._task = None
        self._shutdown_event = None

    async def _loop(self) -> None:
        next_run = next_occurrence(settings.run_at)
        logger.info(f"Daily scheduler started, next run at {next_run.isoformat()}")

        while not self._shutdown_event.is_set():
            remaining = (next_run - utc_now()).total_seconds()
            if remaining <= 0:
                await self._run_once()
                next_run = next_occurrence(settings.run_at)
                logger.info(f"Next daily run at {next_run.isoformat()}")
                continue

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=min(remaining, settings.scheduler_poll_cap_seconds),
                )
            except asyncio.TimeoutError:
                pass

        logger.info("Daily scheduler stopped")

    async def _run_once(self) -> None:
        try:
            reset, distribution = await run_daily_cycle(self.session_factory, self.notifier)
        except Exception as e:
            logger.error(f"Daily cycle error: {e}", exc_info=True)
            return
        logger.info(
            f"Daily cycle done: expired {reset.expired_assignments}, "
            f"assigned {distribution.tasks_assigned} tasks"
        )
