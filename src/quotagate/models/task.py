"""Task model - catalog entry with lifetime counters."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from quotagate.models.enums import TaskPriority, TaskState


class Task(BaseModel):
    """A distributable micro-job."""

    id: int
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM

    threshold_value: int
    task_completion_count: int = 0
    task_distribution_count: int = 0

    is_active: bool = True
    task_status: TaskState = TaskState.ACTIVE
    requires_photo: bool = False
    base_reward: Decimal = Decimal("0.00")

    created_at: datetime
    updated_at: datetime

    def is_distributable(self) -> bool:
        """Python mirror of the SQL eligibility predicate used for candidates."""
        return (
            self.is_active
            and self.task_status == TaskState.ACTIVE
            and self.task_distribution_count < self.threshold_value
            and self.task_completion_count < self.threshold_value
        )
