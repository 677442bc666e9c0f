"""
Concurrency and race condition tests.
"""

import asyncio

import pytest

from quotagate.db.repositories import TaskRepository
from quotagate.engine import CompletionService, DistributionEngine


@pytest.mark.asyncio
async def test_concurrent_claims_never_exceed_threshold(session_factory, seed):
    """Two concurrent compare-and-swap claims on a threshold-1 task: one wins."""
    task = await seed.task(threshold_value=1)

    async def claim():
        async with session_factory() as session, session.begin():
            return await TaskRepository(session).claim_for_distribution(task.id)

    outcomes = await asyncio.gather(claim(), claim())

    assert sorted(outcomes) == [False, True]
    assert (await seed.get_task(task.id)).task_distribution_count == 1


@pytest.mark.asyncio
async def test_two_users_race_for_last_slot(session_factory, seed):
    """Exactly one of two users racing for a threshold-1 task receives it."""
    membership = await seed.membership(tasks_per_day=1)
    alice = await seed.user()
    bob = await seed.user()
    await seed.grant(alice.id, membership.id)
    await seed.grant(bob.id, membership.id)
    task = await seed.task(threshold_value=1)

    engine = DistributionEngine(session_factory)
    results = await asyncio.gather(
        engine.assign_tasks_to_user(alice.id),
        engine.assign_tasks_to_user(bob.id),
    )

    assert sorted(r.assigned_count for r in results) == [0, 1]
    assert all(r.success for r in results)
    assert (await seed.get_task(task.id)).task_distribution_count == 1


@pytest.mark.asyncio
async def test_concurrent_passes_for_same_user_respect_quota(session_factory, seed):
    membership = await seed.membership(tasks_per_day=2)
    user = await seed.user()
    await seed.grant(user.id, membership.id)
    for _ in range(6):
        await seed.task()

    engine = DistributionEngine(session_factory)
    results = await asyncio.gather(*(engine.assign_tasks_to_user(user.id) for _ in range(3)))

    assert sum(r.assigned_count for r in results) == 2
    assignments = await CompletionService(session_factory).list_assignments(user.id)
    assert len(assignments) == 2
    assert len({a.task_id for a in assignments}) == 2
