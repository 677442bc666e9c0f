"""QuotaGate enumerations."""

from enum import Enum


class AssignmentStatus(str, Enum):
    """Assignment lifecycle status."""

    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


class TaskPriority(str, Enum):
    """Task priority. Distribution serves urgent first."""

    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.URGENT: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.MEDIUM: 3,
    TaskPriority.LOW: 4,
}


class TaskState(str, Enum):
    """Administrative task status (``task_status``)."""

    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class ReferralType(str, Enum):
    """Referral level."""

    DIRECT = "direct"
    INDIRECT = "indirect"


class IncomeType(str, Enum):
    """Account credit categories."""

    TASK = "task"
    REFERRAL = "referral"


class EventType(str, Enum):
    """Events published to the notification collaborator."""

    TASKS_ASSIGNED = "tasks.assigned"
    ASSIGNMENT_COMPLETED = "assignment.completed"
    REFERRAL_BONUS_CREDITED = "referral.bonus_credited"
