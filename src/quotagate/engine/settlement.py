"""Reward and referral settlement.

Both entry points run inside the caller's transaction and return the events
to publish once that transaction has committed.
"""

import logging
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.config import settings
from quotagate.db.repositories import AccountRepository, ReferralRepository, UserRepository
from quotagate.models import (
    Assignment,
    EventType,
    IncomeType,
    PendingEvent,
    ReferralType,
    SettlementResult,
    User,
)
from quotagate.observability.metrics import metrics

logger = logging.getLogger(__name__)


async def settle_completion(session: AsyncSession, assignment: Assignment) -> SettlementResult:
    """Credit an assignment's frozen ``final_reward`` to its user.

    Only the single-use pending -> completed transition calls this, so an
    assignment is settled at most once.
    """
    amount = assignment.final_reward
    await UserRepository(session).add_points(assignment.user_id, amount)
    await AccountRepository(session).credit(assignment.user_id, amount, IncomeType.TASK)

    metrics.inc_counter("settlement.completions")
    return SettlementResult(
        credited=amount,
        events=[
            PendingEvent(
                event_type=EventType.ASSIGNMENT_COMPLETED,
                payload={
                    "assignment_id": assignment.id,
                    "user_id": str(assignment.user_id),
                    "task_id": assignment.task_id,
                    "reward": str(amount),
                },
            )
        ],
    )


async def process_signup_referral(session: AsyncSession, user: User) -> SettlementResult:
    """Pay the direct and indirect referral bonuses for a newly registered user.

    The chain is two fixed hops: the user's referrer, then that referrer's own
    referrer. Each level pays once per referred user; a repeat call finds the
    existing ledger row and credits nothing.
    """
    result = SettlementResult()
    if user.referred_by_id is None:
        return result

    users = UserRepository(session)
    direct_referrer = await users.get(user.referred_by_id)
    if direct_referrer is None:
        logger.warning(f"Referrer {user.referred_by_id} of user {user.id} no longer exists")
        return result

    await _pay_bonus(
        session, result, direct_referrer, user, ReferralType.DIRECT, settings.direct_referral_bonus
    )

    if direct_referrer.referred_by_id is not None:
        indirect_referrer = await users.get(direct_referrer.referred_by_id)
        if indirect_referrer is not None:
            await _pay_bonus(
                session,
                result,
                indirect_referrer,
                user,
                ReferralType.INDIRECT,
                settings.indirect_referral_bonus,
            )

    return result


async def _pay_bonus(
    session: AsyncSession,
    result: SettlementResult,
    referrer: User,
    referred: User,
    referral_type: ReferralType,
    amount: Decimal,
) -> None:
    referrals = ReferralRepository(session)
    if await referrals.exists_for(referred.id, referral_type):
        logger.debug(f"{referral_type.value} referral bonus for {referred.id} already paid")
        return

    try:
        async with session.begin_nested():  # SAVEPOINT
            await referrals.create(referrer.id, referred.id, referral_type, amount)
            await UserRepository(session).increment_referral_count(referrer.id, referral_type)
            if amount > 0:
                await AccountRepository(session).credit(referrer.id, amount, IncomeType.REFERRAL)
    except IntegrityError:
        # Lost to a concurrent settlement of the same level
        logger.info(f"{referral_type.value} referral bonus for {referred.id} already recorded")
        return

    metrics.inc_counter(f"settlement.referrals.{referral_type.value}")
    result.credited += amount
    result.events.append(
        PendingEvent(
            event_type=EventType.REFERRAL_BONUS_CREDITED,
            payload={
                "referrer_id": str(referrer.id),
                "referred_user_id": str(referred.id),
                "referral_type": referral_type.value,
                "bonus_amount": str(amount),
            },
        )
    )
