"""QuotaGate data models."""

from quotagate.models.account import Account, Referral, User
from quotagate.models.assignment import Assignment
from quotagate.models.commands import (
    CompleteAssignmentCommand,
    CreateMembershipCommand,
    CreateTaskCommand,
    GrantMembershipCommand,
    RegisterUserCommand,
    UpdateMembershipCommand,
    UpdateTaskCommand,
)
from quotagate.models.enums import (
    AssignmentStatus,
    EventType,
    IncomeType,
    ReferralType,
    TaskPriority,
    TaskState,
)
from quotagate.models.membership import Membership, UserMembership
from quotagate.models.results import (
    DistributionResult,
    OperationError,
    PendingEvent,
    ResetResult,
    SettlementResult,
    UserAssignmentResult,
    UserTaskStatus,
)
from quotagate.models.task import Task

__all__ = [
    "Account",
    "Assignment",
    "AssignmentStatus",
    "CompleteAssignmentCommand",
    "CreateMembershipCommand",
    "CreateTaskCommand",
    "DistributionResult",
    "EventType",
    "GrantMembershipCommand",
    "IncomeType",
    "Membership",
    "OperationError",
    "PendingEvent",
    "Referral",
    "ReferralType",
    "RegisterUserCommand",
    "ResetResult",
    "SettlementResult",
    "Task",
    "TaskPriority",
    "TaskState",
    "UpdateMembershipCommand",
    "UpdateTaskCommand",
    "User",
    "UserAssignmentResult",
    "UserMembership",
    "UserTaskStatus",
]
