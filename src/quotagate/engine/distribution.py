"""Distribution engine - daily task assignment under quota and threshold caps."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quotagate.config import settings
from quotagate.db.repositories import AssignmentRepository, TaskRepository, UserRepository
from quotagate.engine.eligibility import Eligibility, EligibilityResolver
from quotagate.engine.errors import (
    DistributionRunFailed,
    InvariantViolation,
    NoActiveMembership,
    PersistenceFailure,
    QuotaGateError,
    TaskPersistenceFailure,
    TaskUnavailable,
)
from quotagate.integrations.notifier import Notifier
from quotagate.models import (
    Assignment,
    DistributionResult,
    EventType,
    OperationError,
    Task,
    UserAssignmentResult,
)
from quotagate.observability.metrics import metrics
from quotagate.utils.time import end_of_day, utc_now

logger = logging.getLogger(__name__)

# One batch run at a time per database, shared by the API and the scheduler
_batch_locks: dict[async_sessionmaker, asyncio.Lock] = {}


def _batch_lock(session_factory: async_sessionmaker) -> asyncio.Lock:
    lock = _batch_locks.get(session_factory)
    if lock is None:
        lock = asyncio.Lock()
        _batch_locks[session_factory] = lock
    return lock


def _error(exc: QuotaGateError, user_id: UUID, task_id: Optional[int] = None) -> OperationError:
    return OperationError(code=exc.code, message=exc.message, user_id=user_id, task_id=task_id)


class DistributionEngine:
    """Assigns each eligible user up to their membership's daily quota."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[Notifier] = None,
        tz: Optional[ZoneInfo] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.tz = tz

    # =========================================================================
    # On-demand
    # =========================================================================

    async def assign_tasks_to_user(
        self, user_id: UUID, now: Optional[datetime] = None
    ) -> UserAssignmentResult:
        """
        Top a single user up to today's quota.

        Runs in its own transaction. Per-user failures are reported in the
        result rather than raised; on a fatal one the whole pass is rolled back
        and ``assigned_count`` is 0.
        """
        now = now or utc_now()
        result = UserAssignmentResult(success=True, user_id=user_id)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._assign_in_session(session, user_id, now, result)
        except NoActiveMembership as e:
            logger.info(f"Skipping user {user_id}: {e.message}")
            metrics.inc_counter("distribution.users.no_membership")
            return self._failed(result, _error(e, user_id))
        except InvariantViolation as e:
            logger.critical(f"Invariant violation for user {user_id}: {e.message}")
            metrics.inc_counter("distribution.invariant_violations")
            return self._failed(result, _error(e, user_id))
        except SQLAlchemyError as e:
            logger.error(f"Assignment pass failed for user {user_id}: {e}", exc_info=True)
            metrics.inc_counter("distribution.users.failed")
            failure = PersistenceFailure(f"Assignment pass failed: {e}", user_id)
            return self._failed(result, _error(failure, user_id))

        result.assigned_count = len(result.assignment_ids)
        if result.assigned_count:
            metrics.inc_counter("distribution.assignments.created", result.assigned_count)
            logger.info(f"Assigned {result.assigned_count} tasks to user {user_id}")
            if self.notifier:
                self.notifier.publish(
                    EventType.TASKS_ASSIGNED,
                    {
                        "user_id": str(user_id),
                        "assignment_ids": list(result.assignment_ids),
                        "count": result.assigned_count,
                    },
                )
        return result

    @staticmethod
    def _failed(result: UserAssignmentResult, error: OperationError) -> UserAssignmentResult:
        result.success = False
        result.assigned_count = 0
        result.assignment_ids = []
        result.errors.append(error)
        return result

    async def _assign_in_session(
        self,
        session: AsyncSession,
        user_id: UUID,
        now: datetime,
        result: UserAssignmentResult,
    ) -> None:
        eligibility = await EligibilityResolver(session, self.tz).resolve(
            user_id, now, for_update=True
        )
        needed = eligibility.remaining
        if needed <= 0:
            logger.debug(f"User {user_id} already has {eligibility.assigned_today} tasks today")
            return

        tasks = TaskRepository(session)
        expires_at = end_of_day(now, self.tz)
        # Tasks ever bound to the user plus those tried in this pass
        attempted = set(eligibility.assigned_task_ids)
        refills = 0

        while needed > 0:
            candidates = await tasks.list_candidates(needed, exclude_ids=attempted)
            if not candidates:
                break

            shortfall = 0
            for task in candidates:
                attempted.add(task.id)
                try:
                    assignment = await self._claim(session, eligibility, task, now, expires_at)
                except TaskUnavailable:
                    logger.debug(f"Task {task.id} taken by a concurrent pass")
                    metrics.inc_counter("distribution.claims.lost")
                    shortfall += 1
                    continue
                except TaskPersistenceFailure as e:
                    logger.warning(e.message)
                    result.errors.append(_error(e, user_id, task.id))
                    shortfall += 1
                    continue

                result.assignment_ids.append(assignment.id)
                needed -= 1

            if needed <= 0 or shortfall == 0 or refills >= settings.candidate_refill_rounds:
                break
            refills += 1

    async def _claim(
        self,
        session: AsyncSession,
        eligibility: Eligibility,
        task: Task,
        now: datetime,
        expires_at: datetime,
    ) -> Assignment:
        """Increment the task counter and insert the assignment as one unit."""
        try:
            async with session.begin_nested():  # SAVEPOINT
                if not await TaskRepository(session).claim_for_distribution(task.id):
                    raise TaskUnavailable(task.id)
                return await AssignmentRepository(session).create(
                    user_id=eligibility.user_id,
                    task=task,
                    membership=eligibility.membership,
                    assigned_at=now,
                    expires_at=expires_at,
                )
        except IntegrityError as e:
            raise InvariantViolation(
                f"Task {task.id} is already assigned to user {eligibility.user_id}"
            ) from e
        except SQLAlchemyError as e:
            raise TaskPersistenceFailure(task.id, eligibility.user_id, str(e)) from e

    # =========================================================================
    # Batch
    # =========================================================================

    async def assign_daily_tasks(self, now: Optional[datetime] = None) -> DistributionResult:
        """
        Run one distribution pass over every eligible user.

        Users are served by ``distribution_priority`` then ``priority_level``
        (both descending) then signup order. Each user gets an independent
        transaction; their failures are aggregated into the result.

        Raises:
            DistributionRunFailed: the user list could not be read, or another
                run is already in progress in this process
        """
        lock = _batch_lock(self.session_factory)
        if lock.locked():
            raise DistributionRunFailed("A distribution run is already in progress")

        async with lock:
            result = DistributionResult(run_id=uuid4(), started_at=utc_now())
            logger.info(f"Distribution run {result.run_id} started")

            try:
                async with self.session_factory() as session:
                    user_ids = await UserRepository(session).list_distribution_candidates(
                        now or result.started_at
                    )
            except SQLAlchemyError as e:
                logger.error(f"Distribution run {result.run_id} failed: {e}", exc_info=True)
                metrics.inc_counter("distribution.runs.failed")
                raise DistributionRunFailed(f"Could not list eligible users: {e}") from e

            with metrics.timer("distribution.run.duration_ms"):
                for user_id in user_ids:
                    user_result = await self.assign_tasks_to_user(user_id, now)
                    result.users_processed += 1
                    if user_result.assigned_count:
                        result.users_assigned += 1
                        result.tasks_assigned += user_result.assigned_count
                    result.errors.extend(user_result.errors)

            result.finished_at = utc_now()
            metrics.inc_counter("distribution.runs")
            logger.info(
                f"Distribution run {result.run_id} finished: "
                f"{result.tasks_assigned} tasks to {result.users_assigned}/"
                f"{result.users_processed} users, {len(result.errors)} errors"
            )
            return result

    # =========================================================================
    # Stats
    # =========================================================================

    async def get_distribution_stats(self) -> dict[str, Any]:
        async with self.session_factory() as session:
            task_counts = await TaskRepository(session).counts()
            assignment_counts = await AssignmentRepository(session).status_counts()

        total = assignment_counts["total"]
        completed = assignment_counts["completed"]
        efficiency = round(completed / total * 100, 2) if total else 0.0

        metrics.set_gauge("assignments.pending", assignment_counts["pending"])
        metrics.set_gauge("tasks.available", task_counts["available_for_distribution"])

        return {
            "tasks": task_counts,
            "assignments": assignment_counts,
            "distribution_efficiency": efficiency,
        }
