"""Membership models - quota tiers and user bindings."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class Membership(BaseModel):
    """Membership tier defining a daily task quota."""

    id: int
    name: str
    description: Optional[str] = None

    tasks_per_day: int = Field(ge=0)
    reward_multiplier: Decimal = Field(ge=0)

    # Higher wins when a user holds several bindings
    priority_level: int = 0
    # Higher is served first in batch runs
    distribution_priority: int = 0

    price: Decimal = Decimal("0.00")
    duration_days: Optional[int] = None
    is_active: bool = True

    created_at: datetime
    updated_at: datetime


class UserMembership(BaseModel):
    """Binding of one user to one membership."""

    id: int
    user_id: UUID
    membership_id: int
    started_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool = True
    last_reset_date: Optional[date] = None
    daily_tasks_completed: int = 0

    def is_current(self, now: datetime) -> bool:
        """Active and not past its expiry."""
        return self.is_active and (self.expires_at is None or self.expires_at > now)
