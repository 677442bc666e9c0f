"""Task completion - the single-use pending -> completed transition."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quotagate.config import settings
from quotagate.db.repositories import (
    AssignmentRepository,
    TaskRepository,
    UserMembershipRepository,
)
from quotagate.engine.errors import (
    AssignmentNotCompletable,
    AssignmentNotFound,
    PhotoRequired,
    TaskNotFound,
)
from quotagate.engine.settlement import settle_completion
from quotagate.integrations.notifier import Notifier
from quotagate.models import Assignment, AssignmentStatus, CompleteAssignmentCommand
from quotagate.utils.time import utc_now

logger = logging.getLogger(__name__)


class CompletionService:
    """Accepts completions from the task completion collaborator."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[Notifier] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier

    async def complete_assignment(self, command: CompleteAssignmentCommand) -> Assignment:
        """
        Mark an assignment completed and settle its reward.

        The status change is a conditional UPDATE on ``status = pending AND
        expires_at >= now``, so a second completion (or one racing the expiry
        sweep) matches no row and settles nothing.

        Raises:
            AssignmentNotFound: unknown id, or it belongs to another user
            PhotoRequired: the task needs proof and none was supplied
            AssignmentNotCompletable: already completed, expired, or past deadline
        """
        now = utc_now()
        async with self.session_factory() as session:
            async with session.begin():
                assignments = AssignmentRepository(session)
                assignment = await assignments.get(command.assignment_id)
                if assignment is None or (
                    command.user_id is not None and assignment.user_id != command.user_id
                ):
                    raise AssignmentNotFound(command.assignment_id)

                task = await TaskRepository(session).get(assignment.task_id)
                if task is None:
                    raise TaskNotFound(assignment.task_id)
                if task.requires_photo and not command.completion_photo_url:
                    raise PhotoRequired(task.id)

                if not await assignments.mark_completed(
                    assignment.id, now, command.completion_photo_url
                ):
                    status = assignment.status
                    if status == AssignmentStatus.PENDING:
                        status = AssignmentStatus.EXPIRED
                    raise AssignmentNotCompletable(assignment.id, status.value)

                await TaskRepository(session).increment_completion(task.id)
                if assignment.membership_id is not None:
                    await UserMembershipRepository(session).increment_daily_completed(
                        assignment.user_id, assignment.membership_id
                    )

                completed = assignment.model_copy(
                    update={
                        "status": AssignmentStatus.COMPLETED,
                        "completed_at": now,
                        "completion_photo_url": command.completion_photo_url,
                    }
                )
                settlement = await settle_completion(session, completed)

        logger.info(
            f"Assignment {completed.id} completed by user {completed.user_id}, "
            f"credited {settlement.credited}"
        )
        if self.notifier:
            self.notifier.publish_all(settlement.events)
        return completed

    async def list_assignments(
        self,
        user_id: UUID,
        status: Optional[AssignmentStatus] = None,
        limit: Optional[int] = None,
    ) -> list[Assignment]:
        limit = min(limit or settings.default_list_limit, settings.max_list_limit)
        async with self.session_factory() as session:
            return await AssignmentRepository(session).list_for_user(user_id, status, limit)
