"""QuotaGate engine errors."""

from typing import Optional
from uuid import UUID


class QuotaGateError(Exception):
    """Base error for QuotaGate operations."""

    def __init__(self, message: str, code: str = "QUOTAGATE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NoActiveMembership(QuotaGateError):
    """User holds no active, unexpired membership binding."""

    def __init__(self, user_id: UUID):
        super().__init__(f"User {user_id} has no active membership", "NO_ACTIVE_MEMBERSHIP")
        self.user_id = user_id


class TaskUnavailable(QuotaGateError):
    """Task left the eligible set before it could be claimed (race lost)."""

    def __init__(self, task_id: int):
        super().__init__(f"Task {task_id} is no longer available", "TASK_UNAVAILABLE")
        self.task_id = task_id


class PersistenceFailure(QuotaGateError):
    """Storage or transaction error while processing one user."""

    def __init__(self, message: str, user_id: Optional[UUID] = None):
        super().__init__(message, "PERSISTENCE_FAILURE")
        self.user_id = user_id


class TaskPersistenceFailure(PersistenceFailure):
    """Storage error while writing a single assignment."""

    def __init__(self, task_id: int, user_id: Optional[UUID], detail: str):
        super().__init__(f"Failed to assign task {task_id}: {detail}", user_id)
        self.code = "TASK_PERSISTENCE_FAILURE"
        self.task_id = task_id


class InvariantViolation(QuotaGateError):
    """A storage-enforced invariant was hit (e.g. duplicate user-task assignment)."""

    def __init__(self, message: str):
        super().__init__(message, "INVARIANT_VIOLATION")


class DistributionRunFailed(QuotaGateError):
    """Batch-level failure; nothing was distributed."""

    def __init__(self, message: str):
        super().__init__(message, "DISTRIBUTION_RUN_FAILED")


class UserNotFound(QuotaGateError):
    def __init__(self, user_id: UUID):
        super().__init__(f"User not found: {user_id}", "USER_NOT_FOUND")
        self.user_id = user_id


class MembershipNotFound(QuotaGateError):
    def __init__(self, membership_id: int):
        super().__init__(f"Membership not found: {membership_id}", "MEMBERSHIP_NOT_FOUND")
        self.membership_id = membership_id


class TaskNotFound(QuotaGateError):
    def __init__(self, task_id: int):
        super().__init__(f"Task not found: {task_id}", "TASK_NOT_FOUND")
        self.task_id = task_id


class AssignmentNotFound(QuotaGateError):
    def __init__(self, assignment_id: int):
        super().__init__(f"Assignment not found: {assignment_id}", "ASSIGNMENT_NOT_FOUND")
        self.assignment_id = assignment_id


class AssignmentNotCompletable(QuotaGateError):
    """Assignment is expired, already completed, or past its deadline."""

    def __init__(self, assignment_id: int, status: str):
        super().__init__(
            f"Assignment {assignment_id} cannot be completed (status: {status})",
            "ASSIGNMENT_NOT_COMPLETABLE",
        )
        self.assignment_id = assignment_id
        self.status = status


class PhotoRequired(QuotaGateError):
    def __init__(self, task_id: int):
        super().__init__(f"Task {task_id} requires a completion photo", "PHOTO_REQUIRED")
        self.task_id = task_id


class InvalidReferralCode(QuotaGateError):
    def __init__(self, code: str):
        super().__init__(f"Invalid referral code: {code}", "INVALID_REFERRAL_CODE")
        self.referral_code = code


class DuplicateUser(QuotaGateError):
    def __init__(self, field: str):
        super().__init__(f"A user with this {field} already exists", "DUPLICATE_USER")
        self.field = field


class DuplicateMembership(QuotaGateError):
    def __init__(self, name: str):
        super().__init__(f"A membership named {name!r} already exists", "DUPLICATE_MEMBERSHIP")
        self.name = name


class ThresholdBelowDistributed(QuotaGateError):
    """A task's threshold cannot drop below the number of times it was handed out."""

    def __init__(self, task_id: int, threshold_value: int, distributed: int):
        super().__init__(
            f"Task {task_id} was already distributed {distributed} times; "
            f"threshold {threshold_value} is too low",
            "THRESHOLD_BELOW_DISTRIBUTED",
        )
        self.task_id = task_id
        self.threshold_value = threshold_value
        self.distributed = distributed
