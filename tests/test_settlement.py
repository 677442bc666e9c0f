"""
Reward and referral settlement tests.
"""

from decimal import Decimal

import pytest

from quotagate.db.repositories import (
    AccountRepository,
    AssignmentRepository,
    ReferralRepository,
    UserRepository,
)
from quotagate.engine import process_signup_referral, settle_completion
from quotagate.models import EventType, ReferralType
from quotagate.utils.time import end_of_day, utc_now


async def _account(session_factory, user_id):
    async with session_factory() as session:
        return await AccountRepository(session).get(user_id)


async def _user(session_factory, user_id):
    async with session_factory() as session:
        return await UserRepository(session).get(user_id)


@pytest.mark.asyncio
async def test_settle_completion_credits_points_and_account(session_factory, seed):
    user = await seed.user()
    membership = await seed.membership(reward_multiplier=Decimal("2.00"))
    task = await seed.task(base_reward=Decimal("1.25"))
    now = utc_now()

    async with session_factory() as session, session.begin():
        assignment = await AssignmentRepository(session).create(
            user.id, task, membership, now, end_of_day(now)
        )
        result = await settle_completion(session, assignment)

    assert result.credited == Decimal("2.50")
    assert [e.event_type for e in result.events] == [EventType.ASSIGNMENT_COMPLETED]

    account = await _account(session_factory, user.id)
    assert account.balance == Decimal("2.50")
    assert account.tasks_income == Decimal("2.50")
    assert account.total_earned == Decimal("2.50")
    assert account.referral_income == Decimal("0.00")
    assert (await _user(session_factory, user.id)).total_points == Decimal("2.50")


@pytest.mark.asyncio
async def test_unreferred_user_pays_no_bonus(session_factory, seed):
    user = await seed.user()

    async with session_factory() as session, session.begin():
        result = await process_signup_referral(session, user)

    assert result.credited == Decimal("0.00")
    assert result.events == []


@pytest.mark.asyncio
async def test_direct_and_indirect_bonuses(session_factory, seed):
    grandparent = await seed.user()
    parent = await seed.user(referred_by=grandparent)
    child = await seed.user(referred_by=parent)

    async with session_factory() as session, session.begin():
        result = await process_signup_referral(session, child)

    assert result.credited == Decimal("7.50")
    assert [e.payload["referral_type"] for e in result.events] == ["direct", "indirect"]

    parent_account = await _account(session_factory, parent.id)
    assert parent_account.balance == Decimal("5.00")
    assert parent_account.referral_income == Decimal("5.00")
    assert parent_account.total_bonus == Decimal("5.00")

    grandparent_account = await _account(session_factory, grandparent.id)
    assert grandparent_account.balance == Decimal("2.50")
    assert grandparent_account.referral_income == Decimal("2.50")

    assert (await _user(session_factory, parent.id)).direct_referrals_count == 1
    assert (await _user(session_factory, grandparent.id)).indirect_referrals_count == 1


@pytest.mark.asyncio
async def test_chain_stops_after_two_hops(session_factory, seed):
    root = await seed.user()
    a = await seed.user(referred_by=root)
    b = await seed.user(referred_by=a)
    c = await seed.user(referred_by=b)

    async with session_factory() as session, session.begin():
        await process_signup_referral(session, c)

    assert (await _account(session_factory, root.id)).balance == Decimal("0.00")
    assert (await _account(session_factory, a.id)).balance == Decimal("2.50")
    assert (await _account(session_factory, b.id)).balance == Decimal("5.00")


@pytest.mark.asyncio
async def test_referral_bonus_paid_once(session_factory, seed):
    parent = await seed.user()
    child = await seed.user(referred_by=parent)

    async with session_factory() as session, session.begin():
        first = await process_signup_referral(session, child)
    async with session_factory() as session, session.begin():
        second = await process_signup_referral(session, child)

    assert first.credited == Decimal("5.00")
    assert second.credited == Decimal("0.00")
    assert (await _account(session_factory, parent.id)).balance == Decimal("5.00")

    async with session_factory() as session:
        referrals = await ReferralRepository(session).list_for_referrer(parent.id)
    assert [r.referral_type for r in referrals] == [ReferralType.DIRECT]
