"""Structured results returned to collaborators."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from quotagate.models.enums import EventType


class OperationError(BaseModel):
    """One aggregated error inside a result summary."""

    code: str
    message: str
    user_id: Optional[UUID] = None
    task_id: Optional[int] = None


class UserAssignmentResult(BaseModel):
    """Outcome of one user's assignment pass."""

    success: bool
    user_id: UUID
    assigned_count: int = 0
    assignment_ids: list[int] = Field(default_factory=list)
    errors: list[OperationError] = Field(default_factory=list)


class DistributionResult(BaseModel):
    """Summary of a batch distribution run."""

    run_id: UUID
    started_at: datetime
    finished_at: Optional[datetime] = None
    users_processed: int = 0
    users_assigned: int = 0
    tasks_assigned: int = 0
    errors: list[OperationError] = Field(default_factory=list)


class ResetResult(BaseModel):
    expired_assignments: int = 0
    reset_bindings: int = 0


class PendingEvent(BaseModel):
    """Event to publish once the surrounding transaction has committed."""

    event_type: EventType
    payload: dict[str, Any]


class SettlementResult(BaseModel):
    credited: Decimal = Decimal("0.00")
    events: list[PendingEvent] = Field(default_factory=list)


class UserTaskStatus(BaseModel):
    has_membership: bool
    membership_name: Optional[str] = None
    tasks_per_day: int = 0
    assigned_today: int = 0
    remaining_today: int = 0
    can_receive_tasks: bool = False
