"""Assignment model - ledger entry binding a user to a task."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from quotagate.models.enums import AssignmentStatus


class Assignment(BaseModel):
    """One (user, task) binding. Never more than one per pair."""

    id: int
    user_id: UUID
    task_id: int
    membership_id: Optional[int] = None

    status: AssignmentStatus = AssignmentStatus.PENDING
    assigned_at: datetime
    expires_at: datetime

    base_points: Decimal
    vip_multiplier: Decimal
    final_reward: Decimal

    completed_at: Optional[datetime] = None
    completion_photo_url: Optional[str] = None

    def can_be_completed(self, now: datetime) -> bool:
        return self.status == AssignmentStatus.PENDING and self.expires_at >= now
