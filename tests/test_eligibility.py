"""
Eligibility resolution tests.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from quotagate.db.repositories import AssignmentRepository
from quotagate.db.tables import AssignmentTable
from quotagate.engine import EligibilityResolver, NoActiveMembership
from quotagate.models import AssignmentStatus
from quotagate.utils.time import day_window, end_of_day, utc_now


async def _resolve(session_factory, user_id, **kwargs):
    async with session_factory() as session:
        return await EligibilityResolver(session).resolve(user_id, **kwargs)


@pytest.mark.asyncio
async def test_user_without_binding_has_no_membership(session_factory, seed):
    user = await seed.user()

    with pytest.raises(NoActiveMembership) as exc_info:
        await _resolve(session_factory, user.id)

    assert exc_info.value.code == "NO_ACTIVE_MEMBERSHIP"


@pytest.mark.asyncio
async def test_highest_priority_level_wins(session_factory, seed):
    user = await seed.user()
    basic = await seed.membership(name="basic", tasks_per_day=1, priority_level=1)
    vip = await seed.membership(name="vip", tasks_per_day=5, priority_level=3)
    await seed.grant(user.id, vip.id, started_at=utc_now() - timedelta(days=3))
    await seed.grant(user.id, basic.id, started_at=utc_now() - timedelta(hours=1))

    eligibility = await _resolve(session_factory, user.id)

    assert eligibility.membership.name == "vip"
    assert eligibility.quota == 5


@pytest.mark.asyncio
async def test_priority_tie_goes_to_most_recent_binding(session_factory, seed):
    user = await seed.user()
    older = await seed.membership(name="older", tasks_per_day=1, priority_level=2)
    newer = await seed.membership(name="newer", tasks_per_day=4, priority_level=2)
    await seed.grant(user.id, older.id, started_at=utc_now() - timedelta(days=2))
    await seed.grant(user.id, newer.id, started_at=utc_now() - timedelta(days=1))

    eligibility = await _resolve(session_factory, user.id)

    assert eligibility.membership.id == newer.id


@pytest.mark.asyncio
async def test_expired_binding_and_inactive_membership_are_ignored(session_factory, seed):
    user = await seed.user()
    lapsed = await seed.membership(name="lapsed", priority_level=9)
    retired = await seed.membership(name="retired", priority_level=8, is_active=False)
    current = await seed.membership(name="current", priority_level=1)
    await seed.grant(user.id, lapsed.id, expires_at=utc_now() - timedelta(seconds=1))
    await seed.grant(user.id, retired.id)
    await seed.grant(user.id, current.id)

    eligibility = await _resolve(session_factory, user.id)

    assert eligibility.membership.name == "current"


@pytest.mark.asyncio
async def test_assigned_today_counts_only_pending_rows_from_today(session_factory, seed):
    user = await seed.user()
    membership = await seed.membership(tasks_per_day=5)
    await seed.grant(user.id, membership.id)
    tasks = [await seed.task() for _ in range(4)]

    now = utc_now()
    start, _ = day_window(now)
    yesterday = start - timedelta(hours=1)
    async with session_factory() as session, session.begin():
        repo = AssignmentRepository(session)
        pending = await repo.create(user.id, tasks[0], membership, now, end_of_day(now))
        completed = await repo.create(user.id, tasks[1], membership, now, end_of_day(now))
        await repo.create(user.id, tasks[2], membership, yesterday, end_of_day(now))
        expired = await repo.create(user.id, tasks[3], membership, now, end_of_day(now))
        await session.execute(
            update(AssignmentTable)
            .where(AssignmentTable.id == completed.id)
            .values(status=AssignmentStatus.COMPLETED)
        )
        await session.execute(
            update(AssignmentTable)
            .where(AssignmentTable.id == expired.id)
            .values(status=AssignmentStatus.EXPIRED)
        )

    eligibility = await _resolve(session_factory, user.id, now=now)

    assert eligibility.assigned_today == 1
    assert eligibility.remaining == 4
    assert pending.task_id in eligibility.assigned_task_ids
    assert eligibility.assigned_task_ids == {t.id for t in tasks}


@pytest.mark.asyncio
async def test_task_status_without_membership_is_all_zero(session_factory, seed):
    user = await seed.user()

    async with session_factory() as session:
        status = await EligibilityResolver(session).get_user_task_status(user.id)

    assert status.has_membership is False
    assert status.tasks_per_day == 0
    assert status.remaining_today == 0
    assert status.can_receive_tasks is False


@pytest.mark.asyncio
async def test_task_status_reports_remaining_quota(session_factory, seed):
    user = await seed.user()
    membership = await seed.membership(name="gold", tasks_per_day=3, reward_multiplier=Decimal("2.00"))
    await seed.grant(user.id, membership.id)

    async with session_factory() as session:
        status = await EligibilityResolver(session).get_user_task_status(user.id)

    assert status.has_membership is True
    assert status.membership_name == "gold"
    assert status.remaining_today == 3
    assert status.can_receive_tasks is True
