"""Eligibility resolution - effective membership and today's quota usage."""

from datetime import datetime
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.db.repositories import AssignmentRepository, UserMembershipRepository
from quotagate.engine.errors import NoActiveMembership
from quotagate.models import Membership, UserMembership, UserTaskStatus
from quotagate.utils.time import day_window, utc_now


class Eligibility(BaseModel):
    """Snapshot of what a user may receive today."""

    user_id: UUID
    binding: UserMembership
    membership: Membership
    assigned_today: int
    assigned_task_ids: set[int]

    @property
    def quota(self) -> int:
        return self.membership.tasks_per_day

    @property
    def remaining(self) -> int:
        return max(0, self.quota - self.assigned_today)


class EligibilityResolver:
    """Read-only view of a user's effective membership and quota usage."""

    def __init__(self, session: AsyncSession, tz: Optional[ZoneInfo] = None):
        self.session = session
        self.tz = tz
        self.bindings = UserMembershipRepository(session)
        self.assignments = AssignmentRepository(session)

    async def resolve(
        self,
        user_id: UUID,
        now: Optional[datetime] = None,
        for_update: bool = False,
    ) -> Eligibility:
        """
        Resolve the effective membership for ``user_id``.

        Among current bindings the highest ``priority_level`` wins, the most
        recent ``started_at`` breaks ties. ``assigned_today`` counts pending
        assignments created inside today's window; completed and expired rows
        do not use up quota.

        With ``for_update`` the effective binding row is locked for the rest of
        the transaction, so two passes for the same user serialize.

        Raises:
            NoActiveMembership: no current binding to an active membership
        """
        now = now or utc_now()
        effective = await self.bindings.get_effective(user_id, now, for_update=for_update)
        if effective is None:
            raise NoActiveMembership(user_id)

        binding, membership = effective
        start, end = day_window(now, self.tz)
        assigned_today = await self.assignments.count_pending_between(user_id, start, end)
        assigned_task_ids = await self.assignments.assigned_task_ids(user_id)

        return Eligibility(
            user_id=user_id,
            binding=binding,
            membership=membership,
            assigned_today=assigned_today,
            assigned_task_ids=assigned_task_ids,
        )

    async def get_user_task_status(
        self, user_id: UUID, now: Optional[datetime] = None
    ) -> UserTaskStatus:
        try:
            eligibility = await self.resolve(user_id, now)
        except NoActiveMembership:
            return UserTaskStatus(has_membership=False)

        return UserTaskStatus(
            has_membership=True,
            membership_name=eligibility.membership.name,
            tasks_per_day=eligibility.quota,
            assigned_today=eligibility.assigned_today,
            remaining_today=eligibility.remaining,
            can_receive_tasks=eligibility.remaining > 0,
        )
