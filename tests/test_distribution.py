"""
Distribution engine tests: quota, no-repeat, threshold and ordering rules.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from quotagate.db.repositories import TaskRepository
from quotagate.db.tables import TaskTable
from quotagate.engine import DailySweeper, DistributionEngine, DistributionRunFailed
from quotagate.engine import distribution as distribution_module
from quotagate.engine.completion import CompletionService
from quotagate.models import AssignmentStatus, TaskPriority, TaskState
from quotagate.observability.metrics import metrics
from quotagate.utils.time import end_of_day, utc_now


@pytest.fixture
def engine_service(session_factory):
    return DistributionEngine(session_factory)


async def _assignments(session_factory, user_id):
    return await CompletionService(session_factory).list_assignments(user_id)


@pytest.mark.asyncio
async def test_vip_user_receives_quota_in_priority_order(session_factory, seed, engine_service):
    """VIP quota 2 with three open tasks: urgent and high are assigned, low is left."""
    user = await seed.user()
    vip = await seed.membership(name="vip", tasks_per_day=2, reward_multiplier=Decimal("1.50"))
    await seed.grant(user.id, vip.id)
    low = await seed.task(priority=TaskPriority.LOW, base_reward=Decimal("4.00"))
    urgent = await seed.task(priority=TaskPriority.URGENT, base_reward=Decimal("2.00"))
    high = await seed.task(priority=TaskPriority.HIGH, base_reward=Decimal("3.00"))

    result = await engine_service.assign_tasks_to_user(user.id)

    assert result.success is True
    assert result.assigned_count == 2
    assert result.errors == []

    assignments = await _assignments(session_factory, user.id)
    by_task = {a.task_id: a for a in assignments}
    assert set(by_task) == {urgent.id, high.id}
    assert by_task[urgent.id].final_reward == Decimal("3.00")
    assert by_task[high.id].final_reward == Decimal("4.50")
    assert by_task[urgent.id].vip_multiplier == Decimal("1.50")
    assert all(a.status == AssignmentStatus.PENDING for a in assignments)
    assert all(a.expires_at == end_of_day(a.assigned_at) for a in assignments)

    assert (await seed.get_task(urgent.id)).task_distribution_count == 1
    assert (await seed.get_task(high.id)).task_distribution_count == 1
    assert (await seed.get_task(low.id)).task_distribution_count == 0


@pytest.mark.asyncio
async def test_repeat_call_same_day_assigns_nothing(seed, engine_service):
    user = await seed.user()
    membership = await seed.membership(tasks_per_day=2)
    await seed.grant(user.id, membership.id)
    for _ in range(5):
        await seed.task()

    first = await engine_service.assign_tasks_to_user(user.id)
    second = await engine_service.assign_tasks_to_user(user.id)

    assert first.assigned_count == 2
    assert second.success is True
    assert second.assigned_count == 0


@pytest.mark.asyncio
async def test_partial_quota_is_topped_up(seed, engine_service):
    user = await seed.user()
    membership = await seed.membership(tasks_per_day=3)
    await seed.grant(user.id, membership.id)
    await seed.task()

    first = await engine_service.assign_tasks_to_user(user.id)
    assert first.assigned_count == 1

    await seed.task()
    await seed.task()
    await seed.task()
    second = await engine_service.assign_tasks_to_user(user.id)

    assert second.assigned_count == 2


@pytest.mark.asyncio
async def test_expired_task_is_never_offered_again(session_factory, seed, engine_service):
    """A task assigned yesterday and left to expire stays excluded for that user."""
    user = await seed.user()
    membership = await seed.membership(tasks_per_day=1)
    await seed.grant(user.id, membership.id)
    old_task = await seed.task(priority=TaskPriority.URGENT)

    now = utc_now()
    yesterday = now - timedelta(days=1)
    first = await engine_service.assign_tasks_to_user(user.id, now=yesterday)
    assert first.assigned_count == 1

    reset = await DailySweeper(session_factory).reset_daily_state(now=now)
    assert reset.expired_assignments == 1

    new_task = await seed.task(priority=TaskPriority.LOW)
    second = await engine_service.assign_tasks_to_user(user.id, now=now)

    assert second.assigned_count == 1
    assignments = await _assignments(session_factory, user.id)
    assert sorted(a.task_id for a in assignments) == sorted([old_task.id, new_task.id])


@pytest.mark.asyncio
async def test_no_candidates_returns_zero(seed, engine_service):
    user = await seed.user()
    membership = await seed.membership(tasks_per_day=3)
    await seed.grant(user.id, membership.id)

    result = await engine_service.assign_tasks_to_user(user.id)

    assert result.success is True
    assert result.assigned_count == 0


@pytest.mark.asyncio
async def test_zero_quota_membership_gets_nothing(seed, engine_service):
    user = await seed.user()
    membership = await seed.membership(tasks_per_day=0)
    await seed.grant(user.id, membership.id)
    await seed.task()

    result = await engine_service.assign_tasks_to_user(user.id)

    assert result.assigned_count == 0


@pytest.mark.asyncio
async def test_user_without_membership_gets_structured_error(seed, engine_service):
    user = await seed.user()
    await seed.task()

    result = await engine_service.assign_tasks_to_user(user.id)

    assert result.success is False
    assert result.assigned_count == 0
    assert [e.code for e in result.errors] == ["NO_ACTIVE_MEMBERSHIP"]


@pytest.mark.asyncio
async def test_ineligible_tasks_are_skipped(session_factory, seed, engine_service):
    user = await seed.user()
    membership = await seed.membership(tasks_per_day=5)
    await seed.grant(user.id, membership.id)
    paused = await seed.task(task_status=TaskState.PAUSED)
    inactive = await seed.task(is_active=False)
    full = await seed.task(threshold_value=2)
    saturated = await seed.task(threshold_value=2)
    open_task = await seed.task(threshold_value=2)

    async with session_factory() as session, session.begin():
        await session.execute(
            update(TaskTable).where(TaskTable.id == full.id).values(task_distribution_count=2)
        )
        # Completions at the threshold saturate the task on their own
        await session.execute(
            update(TaskTable).where(TaskTable.id == saturated.id).values(task_completion_count=2)
        )

    result = await engine_service.assign_tasks_to_user(user.id)

    assert result.assigned_count == 1
    assignments = await _assignments(session_factory, user.id)
    assert [a.task_id for a in assignments] == [open_task.id]
    assert not {paused.id, inactive.id} & {a.task_id for a in assignments}


@pytest.mark.asyncio
async def test_threshold_caps_distribution_across_users(seed, engine_service):
    membership = await seed.membership(tasks_per_day=1)
    users = [await seed.user() for _ in range(3)]
    for user in users:
        await seed.grant(user.id, membership.id)
    task = await seed.task(threshold_value=2)

    results = [await engine_service.assign_tasks_to_user(u.id) for u in users]

    assert [r.assigned_count for r in results] == [1, 1, 0]
    assert (await seed.get_task(task.id)).task_distribution_count == 2


@pytest.mark.asyncio
async def test_same_priority_oldest_task_first(session_factory, seed, engine_service):
    user = await seed.user()
    membership = await seed.membership(tasks_per_day=1)
    await seed.grant(user.id, membership.id)
    older = await seed.task(priority=TaskPriority.HIGH)
    await seed.task(priority=TaskPriority.HIGH)

    await engine_service.assign_tasks_to_user(user.id)

    assignments = await _assignments(session_factory, user.id)
    assert [a.task_id for a in assignments] == [older.id]


@pytest.mark.asyncio
async def test_duplicate_assignment_is_an_invariant_violation(
    session_factory, seed, engine_service, monkeypatch
):
    """If the ledger constraint fires, the whole pass rolls back."""
    user = await seed.user()
    membership = await seed.membership(tasks_per_day=2)
    await seed.grant(user.id, membership.id)
    task = await seed.task()

    first = await engine_service.assign_tasks_to_user(user.id)
    assert first.assigned_count == 1

    async def already_assigned_candidates(self, limit, exclude_ids=None):
        return [await self.get(task.id)]

    monkeypatch.setattr(TaskRepository, "list_candidates", already_assigned_candidates)
    second = await engine_service.assign_tasks_to_user(user.id)

    assert second.success is False
    assert second.assigned_count == 0
    assert second.errors[0].code == "INVARIANT_VIOLATION"
    assert (await seed.get_task(task.id)).task_distribution_count == 1
    assert metrics.counter_value("distribution.invariant_violations") == 1


@pytest.mark.asyncio
async def test_lost_claims_trigger_refill(session_factory, seed, engine_service, monkeypatch):
    """Candidates taken by a concurrent pass are replaced from a fresh fetch."""
    user = await seed.user()
    membership = await seed.membership(tasks_per_day=1)
    await seed.grant(user.id, membership.id)
    contested = await seed.task(priority=TaskPriority.URGENT, threshold_value=1)
    fallback = await seed.task(priority=TaskPriority.LOW)

    original_claim = TaskRepository.claim_for_distribution

    async def claim(self, task_id):
        if task_id == contested.id:
            return False
        return await original_claim(self, task_id)

    monkeypatch.setattr(TaskRepository, "claim_for_distribution", claim)
    result = await engine_service.assign_tasks_to_user(user.id)

    assert result.assigned_count == 1
    assignments = await _assignments(session_factory, user.id)
    assert [a.task_id for a in assignments] == [fallback.id]
    assert metrics.counter_value("distribution.claims.lost") == 1


# ============================================================================
# Batch runs
# ============================================================================


@pytest.mark.asyncio
async def test_batch_run_serves_users_and_is_idempotent(seed, engine_service):
    membership = await seed.membership(tasks_per_day=2)
    members = [await seed.user() for _ in range(2)]
    for user in members:
        await seed.grant(user.id, membership.id)
    await seed.user()  # no membership, not processed
    for _ in range(6):
        await seed.task()

    first = await engine_service.assign_daily_tasks()
    second = await engine_service.assign_daily_tasks()

    assert first.users_processed == 2
    assert first.users_assigned == 2
    assert first.tasks_assigned == 4
    assert first.finished_at is not None
    assert first.errors == []
    assert second.users_processed == 2
    assert second.tasks_assigned == 0


@pytest.mark.asyncio
async def test_batch_serves_higher_distribution_priority_first(session_factory, seed, engine_service):
    basic = await seed.membership(name="basic", tasks_per_day=1, distribution_priority=1)
    premium = await seed.membership(name="premium", tasks_per_day=1, distribution_priority=10)
    early = await seed.user()
    late = await seed.user()
    await seed.grant(early.id, basic.id)
    await seed.grant(late.id, premium.id)
    await seed.task(threshold_value=1)

    result = await engine_service.assign_daily_tasks()

    assert result.tasks_assigned == 1
    assert len(await _assignments(session_factory, late.id)) == 1
    assert await _assignments(session_factory, early.id) == []


@pytest.mark.asyncio
async def test_overlapping_batch_runs_are_rejected(session_factory, engine_service):
    lock = distribution_module._batch_lock(session_factory)
    await lock.acquire()
    try:
        with pytest.raises(DistributionRunFailed):
            await engine_service.assign_daily_tasks()
    finally:
        lock.release()


@pytest.mark.asyncio
async def test_distribution_stats(session_factory, seed, engine_service):
    user = await seed.user()
    membership = await seed.membership(tasks_per_day=2)
    await seed.grant(user.id, membership.id)
    await seed.task()
    await seed.task()
    await seed.task(is_active=False)
    await engine_service.assign_tasks_to_user(user.id)

    stats = await engine_service.get_distribution_stats()

    assert stats["tasks"] == {"total": 3, "active": 2, "available_for_distribution": 2}
    assert stats["assignments"]["total"] == 2
    assert stats["assignments"]["pending"] == 2
    assert stats["distribution_efficiency"] == 0.0
