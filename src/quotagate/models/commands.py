"""Typed commands accepted from collaborators.

Every write that enters QuotaGate from outside (admin screens, registration,
task completion) goes through one of these models so that unknown or
malformed fields are rejected before they reach persistence.
"""

import re
from decimal import Decimal
from typing import ClassVar, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from quotagate.models.enums import TaskPriority, TaskState

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,100}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Command(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class PartialUpdateCommand(Command):
    """Omitted fields are left unchanged. Only ``nullable_fields`` accept null."""

    nullable_fields: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def reject_null_for_required_columns(self) -> "PartialUpdateCommand":
        nulls = sorted(
            name
            for name in self.model_fields_set
            if getattr(self, name) is None and name not in self.nullable_fields
        )
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return self


class CreateMembershipCommand(Command):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    tasks_per_day: int = Field(..., ge=0)
    reward_multiplier: Decimal = Field(default=Decimal("1.00"), ge=0, max_digits=6, decimal_places=2)
    priority_level: int = Field(default=0, ge=0)
    distribution_priority: int = Field(default=0, ge=0)
    price: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    duration_days: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True


class UpdateMembershipCommand(PartialUpdateCommand):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description", "duration_days"})

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    tasks_per_day: Optional[int] = Field(default=None, ge=0)
    reward_multiplier: Optional[Decimal] = Field(default=None, ge=0, max_digits=6, decimal_places=2)
    priority_level: Optional[int] = Field(default=None, ge=0)
    distribution_priority: Optional[int] = Field(default=None, ge=0)
    price: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    duration_days: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class CreateTaskCommand(Command):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=100)
    priority: TaskPriority = TaskPriority.MEDIUM
    threshold_value: int = Field(..., ge=1)
    base_reward: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    requires_photo: bool = False
    is_active: bool = True
    task_status: TaskState = TaskState.ACTIVE


class UpdateTaskCommand(PartialUpdateCommand):
    """Lifetime counters are not editable."""

    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description", "category"})

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=100)
    priority: Optional[TaskPriority] = None
    threshold_value: Optional[int] = Field(default=None, ge=1)
    base_reward: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    requires_photo: Optional[bool] = None
    is_active: Optional[bool] = None
    task_status: Optional[TaskState] = None


class RegisterUserCommand(Command):
    username: str
    email: str
    referral_code: Optional[str] = Field(default=None, max_length=16)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not _USERNAME_RE.match(v):
            raise ValueError("username must be 3-100 characters of letters, digits, '_', '.', '-'")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not _EMAIL_RE.match(v):
            raise ValueError(f"invalid email address: {v}")
        return v.lower()

    @field_validator("referral_code")
    @classmethod
    def normalize_referral_code(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else None


class GrantMembershipCommand(Command):
    membership_id: int = Field(..., ge=1)
    duration_days: Optional[int] = Field(
        default=None, ge=1, description="Overrides the membership's duration"
    )


class CompleteAssignmentCommand(Command):
    assignment_id: int = Field(..., ge=1)
    user_id: Optional[UUID] = Field(
        default=None, description="When set, the assignment must belong to this user"
    )
    completion_photo_url: Optional[str] = Field(default=None, max_length=1024)

    @model_validator(mode="after")
    def validate_photo_url(self) -> "CompleteAssignmentCommand":
        url = self.completion_photo_url
        if url and not url.startswith(("http://", "https://")):
            raise ValueError("completion_photo_url must be an http(s) URL")
        return self
