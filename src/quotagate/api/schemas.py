"""API request/response schemas.

Write requests reuse the typed commands from ``quotagate.models.commands``;
only shapes specific to HTTP live here.
"""

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from quotagate.models import (
    Assignment,
    Membership,
    Task,
    UserAssignmentResult,
    UserMembership,
)


class HealthResponse(BaseModel):
    status: str
    version: str


class ListMembershipsResponse(BaseModel):
    memberships: list[Membership]


class ListTasksResponse(BaseModel):
    tasks: list[Task]
    limit: int
    offset: int


class GrantMembershipResponse(BaseModel):
    """Binding created, plus the on-demand assignment pass that followed it."""

    binding: UserMembership
    assignment: UserAssignmentResult


class ListAssignmentsResponse(BaseModel):
    assignments: list[Assignment]
    count: int


class CompleteAssignmentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: Optional[UUID] = Field(None, description="Must own the assignment when given")
    completion_photo_url: Optional[str] = Field(None, max_length=1024)


class DistributionStatsResponse(BaseModel):
    tasks: dict[str, int]
    assignments: dict[str, int]
    distribution_efficiency: float


class MetricsResponse(BaseModel):
    metrics: dict[str, Any]
    notifications: Optional[dict[str, Any]] = None
