"""REST API router."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quotagate import __version__
from quotagate.api.deps import get_event_notifier, get_session_factory, verify_api_key
from quotagate.api.schemas import (
    CompleteAssignmentRequest,
    DistributionStatsResponse,
    GrantMembershipResponse,
    HealthResponse,
    ListAssignmentsResponse,
    ListMembershipsResponse,
    ListTasksResponse,
    MetricsResponse,
)
from quotagate.config import settings
from quotagate.engine import (
    CatalogService,
    CompletionService,
    DailySweeper,
    DistributionEngine,
    EligibilityResolver,
    QuotaGateError,
)
from quotagate.integrations.notifier import Notifier
from quotagate.models import (
    Account,
    Assignment,
    AssignmentStatus,
    CompleteAssignmentCommand,
    CreateMembershipCommand,
    CreateTaskCommand,
    DistributionResult,
    GrantMembershipCommand,
    Membership,
    RegisterUserCommand,
    ResetResult,
    Task,
    UpdateMembershipCommand,
    UpdateTaskCommand,
    User,
    UserAssignmentResult,
    UserTaskStatus,
)
from quotagate.observability.metrics import metrics

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])

_STATUS_BY_CODE = {
    "USER_NOT_FOUND": 404,
    "MEMBERSHIP_NOT_FOUND": 404,
    "TASK_NOT_FOUND": 404,
    "ASSIGNMENT_NOT_FOUND": 404,
    "ASSIGNMENT_NOT_COMPLETABLE": 409,
    "DUPLICATE_USER": 409,
    "DUPLICATE_MEMBERSHIP": 409,
    "THRESHOLD_BELOW_DISTRIBUTED": 409,
    "NO_ACTIVE_MEMBERSHIP": 409,
    "PHOTO_REQUIRED": 422,
    "INVALID_REFERRAL_CODE": 422,
    "DISTRIBUTION_RUN_FAILED": 503,
    "PERSISTENCE_FAILURE": 503,
}


def _http_error(error: QuotaGateError) -> HTTPException:
    status_code = _STATUS_BY_CODE.get(error.code, 400)
    return HTTPException(
        status_code=status_code,
        detail={"code": error.code, "message": error.message},
    )


# ============================================================================
# Health & Metrics
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics(notifier: Notifier = Depends(get_event_notifier)):
    return MetricsResponse(metrics=metrics.snapshot(), notifications=notifier.get_circuit_stats())


# ============================================================================
# Membership catalog
# ============================================================================


@router.post("/memberships", response_model=Membership, status_code=201)
async def create_membership(
    command: CreateMembershipCommand,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    try:
        return await CatalogService(session_factory).create_membership(command)
    except QuotaGateError as e:
        raise _http_error(e)


@router.patch("/memberships/{membership_id}", response_model=Membership)
async def update_membership(
    membership_id: int,
    command: UpdateMembershipCommand,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    try:
        return await CatalogService(session_factory).update_membership(membership_id, command)
    except QuotaGateError as e:
        raise _http_error(e)


@router.get("/memberships", response_model=ListMembershipsResponse)
async def list_memberships(
    active_only: bool = Query(False),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    memberships = await CatalogService(session_factory).list_memberships(active_only)
    return ListMembershipsResponse(memberships=memberships)


# ============================================================================
# Task catalog
# ============================================================================


@router.post("/tasks", response_model=Task, status_code=201)
async def create_task(
    command: CreateTaskCommand,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    return await CatalogService(session_factory).create_task(command)


@router.patch("/tasks/{task_id}", response_model=Task)
async def update_task(
    task_id: int,
    command: UpdateTaskCommand,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    try:
        return await CatalogService(session_factory).update_task(task_id, command)
    except QuotaGateError as e:
        raise _http_error(e)


@router.get("/tasks", response_model=ListTasksResponse)
async def list_tasks(
    distributable_only: bool = Query(False),
    limit: Optional[int] = Query(None, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    tasks = await CatalogService(session_factory).list_tasks(distributable_only, limit, offset)
    effective_limit = min(limit or settings.default_list_limit, settings.max_list_limit)
    return ListTasksResponse(tasks=tasks, limit=effective_limit, offset=offset)


# ============================================================================
# Users
# ============================================================================


@router.post("/users", response_model=User, status_code=201)
async def register_user(
    command: RegisterUserCommand,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: Notifier = Depends(get_event_notifier),
):
    """Register a user; referral bonuses are settled in the same transaction."""
    try:
        return await CatalogService(session_factory, notifier).register_user(command)
    except QuotaGateError as e:
        raise _http_error(e)


@router.get("/users/{user_id}/account", response_model=Account)
async def get_account(
    user_id: UUID,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    try:
        return await CatalogService(session_factory).get_account(user_id)
    except QuotaGateError as e:
        raise _http_error(e)


@router.post("/users/{user_id}/memberships", response_model=GrantMembershipResponse, status_code=201)
async def grant_membership(
    user_id: UUID,
    command: GrantMembershipCommand,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: Notifier = Depends(get_event_notifier),
):
    """Grant a membership, then immediately assign today's tasks."""
    try:
        binding = await CatalogService(session_factory).grant_membership(user_id, command)
    except QuotaGateError as e:
        raise _http_error(e)

    assignment = await DistributionEngine(session_factory, notifier).assign_tasks_to_user(user_id)
    return GrantMembershipResponse(binding=binding, assignment=assignment)


@router.post("/users/{user_id}/assignments/assign", response_model=UserAssignmentResult)
async def assign_tasks_to_user(
    user_id: UUID,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: Notifier = Depends(get_event_notifier),
):
    """On-demand assignment. Per-user failures come back in ``errors``."""
    return await DistributionEngine(session_factory, notifier).assign_tasks_to_user(user_id)


@router.get("/users/{user_id}/assignments", response_model=ListAssignmentsResponse)
async def list_assignments(
    user_id: UUID,
    status: Optional[AssignmentStatus] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=200),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    assignments = await CompletionService(session_factory).list_assignments(user_id, status, limit)
    return ListAssignmentsResponse(assignments=assignments, count=len(assignments))


@router.get("/users/{user_id}/task-status", response_model=UserTaskStatus)
async def get_user_task_status(
    user_id: UUID,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    async with session_factory() as session:
        return await EligibilityResolver(session).get_user_task_status(user_id)


# ============================================================================
# Completion
# ============================================================================


@router.post("/assignments/{assignment_id}/complete", response_model=Assignment)
async def complete_assignment(
    assignment_id: int,
    request: CompleteAssignmentRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: Notifier = Depends(get_event_notifier),
):
    """Complete a pending assignment and credit its reward."""
    try:
        command = CompleteAssignmentCommand(
            assignment_id=assignment_id,
            user_id=request.user_id,
            completion_photo_url=request.completion_photo_url,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        return await CompletionService(session_factory, notifier).complete_assignment(command)
    except QuotaGateError as e:
        raise _http_error(e)


# ============================================================================
# Distribution
# ============================================================================


@router.post("/distribution/run", response_model=DistributionResult)
async def run_distribution(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: Notifier = Depends(get_event_notifier),
):
    try:
        return await DistributionEngine(session_factory, notifier).assign_daily_tasks()
    except QuotaGateError as e:
        raise _http_error(e)


@router.post("/distribution/reset", response_model=ResetResult)
async def reset_daily_state(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    try:
        return await DailySweeper(session_factory).reset_daily_state()
    except QuotaGateError as e:
        raise _http_error(e)


@router.get("/distribution/stats", response_model=DistributionStatsResponse)
async def get_distribution_stats(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    return await DistributionEngine(session_factory).get_distribution_stats()
