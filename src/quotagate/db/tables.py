"""SQLAlchemy table definitions."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from quotagate.db.base import Base
from quotagate.db.types import UTCDateTime
from quotagate.models.enums import AssignmentStatus, ReferralType, TaskPriority, TaskState

MONEY = Numeric(12, 2)
MULTIPLIER = Numeric(6, 2)


class MembershipTable(Base):
    """Membership catalog - quota and reward tiers."""

    __tablename__ = "memberships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Quota and rewards
    tasks_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reward_multiplier: Mapped[Decimal] = mapped_column(MULTIPLIER, nullable=False, default=Decimal("1.00"))

    # Ordering
    priority_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    distribution_priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Commercial terms
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("tasks_per_day >= 0", name="ck_memberships_tasks_per_day"),
    )


class UserTable(Base):
    """Members. Identity and referral linkage only; auth lives elsewhere."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # Referral
    referral_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    referred_by_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    direct_referrals_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    indirect_referrals_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    total_points: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("idx_users_referred_by", "referred_by_id"),
    )


class UserMembershipTable(Base):
    """User <-> membership bindings."""

    __tablename__ = "user_memberships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    membership_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("memberships.id", ondelete="CASCADE"), nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Daily counters
    last_reset_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    daily_tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("daily_tasks_completed >= 0", name="ck_user_memberships_daily_completed"),
        # At most one active binding per (user, membership)
        Index(
            "uq_user_membership_active",
            "user_id",
            "membership_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        Index("idx_user_memberships_user_active", "user_id", "is_active"),
    )


class TaskTable(Base):
    """Task catalog with lifetime distribution/completion counters."""

    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    priority: Mapped[TaskPriority] = mapped_column(
        Enum(TaskPriority), nullable=False, default=TaskPriority.MEDIUM
    )

    # Global cap shared by both counters
    threshold_value: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    task_completion_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    task_distribution_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    task_status: Mapped[TaskState] = mapped_column(
        Enum(TaskState), nullable=False, default=TaskState.ACTIVE
    )
    requires_photo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    base_reward: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("threshold_value >= 1", name="ck_tasks_threshold_positive"),
        CheckConstraint(
            "task_distribution_count >= 0 AND task_completion_count >= 0",
            name="ck_tasks_counters_non_negative",
        ),
        CheckConstraint(
            "task_distribution_count <= threshold_value", name="ck_tasks_distribution_within_threshold"
        ),
        # Candidate selection
        Index("idx_tasks_distributable", "is_active", "task_status", "priority", "created_at"),
    )


class AssignmentTable(Base):
    """Assignment ledger - one row per (user, task), ever."""

    __tablename__ = "task_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    task_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    membership_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("memberships.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[AssignmentStatus] = mapped_column(
        Enum(AssignmentStatus), nullable=False, default=AssignmentStatus.PENDING
    )
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Reward, frozen at assignment time
    base_points: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    vip_multiplier: Mapped[Decimal] = mapped_column(MULTIPLIER, nullable=False)
    final_reward: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completion_photo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "task_id", name="uq_assignment_user_task"),
        # Quota check: today's pending rows per user
        Index("idx_assignments_user_status_assigned", "user_id", "status", "assigned_at"),
        # Expiry sweep
        Index("idx_assignments_status_expires", "status", "expires_at"),
    )


class AccountTable(Base):
    """Per-user running balances."""

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    total_bonus: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    tasks_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    referral_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    total_earned: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    total_withdrawals: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class ReferralTable(Base):
    """Referral bonus ledger - each referred user pays each level once."""

    __tablename__ = "referrals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referrer_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    referred_user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    referral_type: Mapped[ReferralType] = mapped_column(Enum(ReferralType), nullable=False)
    bonus_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    bonus_paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("referred_user_id", "referral_type", name="uq_referral_level"),
        Index("idx_referrals_referrer", "referrer_id", "created_at"),
    )
