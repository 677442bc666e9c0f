"""User, account and referral models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from quotagate.models.enums import ReferralType


class User(BaseModel):
    id: UUID
    username: str
    email: str
    referral_code: str
    referred_by_id: Optional[UUID] = None
    direct_referrals_count: int = 0
    indirect_referrals_count: int = 0
    total_points: Decimal = Decimal("0.00")
    is_active: bool = True
    created_at: datetime


class Account(BaseModel):
    """Running balances for a user."""

    user_id: UUID
    balance: Decimal = Decimal("0.00")
    total_bonus: Decimal = Decimal("0.00")
    tasks_income: Decimal = Decimal("0.00")
    referral_income: Decimal = Decimal("0.00")
    total_earned: Decimal = Decimal("0.00")
    total_withdrawals: Decimal = Decimal("0.00")
    is_active: bool = True
    last_activity_at: Optional[datetime] = None


class Referral(BaseModel):
    referrer_id: UUID
    referred_user_id: UUID
    referral_type: ReferralType
    bonus_amount: Decimal
    bonus_paid_at: Optional[datetime] = None
