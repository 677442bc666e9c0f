"""Day-boundary reset and expiry sweep."""

import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quotagate.db.repositories import AssignmentRepository, UserMembershipRepository
from quotagate.engine.errors import PersistenceFailure
from quotagate.models import ResetResult
from quotagate.observability.metrics import metrics
from quotagate.utils.time import local_today, utc_now

logger = logging.getLogger(__name__)


class DailySweeper:
    """Expires stale assignments and zeroes per-binding daily counters."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tz: Optional[ZoneInfo] = None,
    ):
        self.session_factory = session_factory
        self.tz = tz

    async def reset_daily_state(self, now: Optional[datetime] = None) -> ResetResult:
        """
        Run the day-boundary maintenance in one transaction.

        - pending assignments with ``expires_at < now`` become expired
        - bindings not yet reset today get ``daily_tasks_completed = 0``

        Task lifetime counters are never touched: an expired assignment still
        counts toward its task's distribution total. Safe to run repeatedly.
        """
        now = now or utc_now()
        today = local_today(now, self.tz)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    expired = await AssignmentRepository(session).expire_stale(now)
                    reset = await UserMembershipRepository(session).reset_daily_counters(today)
        except SQLAlchemyError as e:
            logger.error(f"Daily reset failed: {e}", exc_info=True)
            metrics.inc_counter("sweeper.runs.failed")
            raise PersistenceFailure(f"Daily reset failed: {e}") from e

        metrics.inc_counter("sweeper.runs")
        metrics.inc_counter("assignments.expired", expired)
        logger.info(f"Daily reset for {today}: expired {expired} assignments, reset {reset} bindings")
        return ResetResult(expired_assignments=expired, reset_bindings=reset)
