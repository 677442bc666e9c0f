"""Database repositories for QuotaGate entities."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import and_, case, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from quotagate.db.tables import (
    AccountTable,
    AssignmentTable,
    MembershipTable,
    ReferralTable,
    TaskTable,
    UserMembershipTable,
    UserTable,
)
from quotagate.models import (
    Account,
    Assignment,
    AssignmentStatus,
    CreateMembershipCommand,
    CreateTaskCommand,
    IncomeType,
    Membership,
    Referral,
    ReferralType,
    Task,
    TaskPriority,
    TaskState,
    UpdateMembershipCommand,
    UpdateTaskCommand,
    User,
    UserMembership,
)
from quotagate.utils.time import utc_now


def distributable_clause() -> ColumnElement[bool]:
    """The single task eligibility predicate for new distribution.

    Completion uses a strict ``<``: a task whose completions have reached the
    threshold is saturated even if some distributions are still pending.
    """
    return and_(
        TaskTable.is_active.is_(True),
        TaskTable.task_status == TaskState.ACTIVE,
        TaskTable.task_distribution_count < TaskTable.threshold_value,
        TaskTable.task_completion_count < TaskTable.threshold_value,
    )


def current_binding_clause(now: datetime) -> ColumnElement[bool]:
    """Binding is active and not past its expiry."""
    return and_(
        UserMembershipTable.is_active.is_(True),
        or_(
            UserMembershipTable.expires_at.is_(None),
            UserMembershipTable.expires_at > now,
        ),
    )


def priority_rank() -> ColumnElement[int]:
    """urgent=1 ... low=4, for ascending sort."""
    return case(
        (TaskTable.priority == TaskPriority.URGENT, TaskPriority.URGENT.rank),
        (TaskTable.priority == TaskPriority.HIGH, TaskPriority.HIGH.rank),
        (TaskTable.priority == TaskPriority.MEDIUM, TaskPriority.MEDIUM.rank),
        else_=TaskPriority.LOW.rank,
    )


class MembershipRepository:
    """Repository for the membership catalog."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, command: CreateMembershipCommand) -> Membership:
        now = utc_now()
        row = MembershipTable(**command.model_dump(), created_at=now, updated_at=now)
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def update(self, membership_id: int, command: UpdateMembershipCommand) -> Membership | None:
        values: dict[str, Any] = command.model_dump(exclude_unset=True)
        if values:
            values["updated_at"] = utc_now()
            await self.session.execute(
                update(MembershipTable)
                .where(MembershipTable.id == membership_id)
                .values(**values)
            )
        return await self.get(membership_id)

    async def get(self, membership_id: int) -> Membership | None:
        result = await self.session.execute(
            select(MembershipTable)
            .where(MembershipTable.id == membership_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def list_memberships(self, active_only: bool = False) -> list[Membership]:
        query = select(MembershipTable)
        if active_only:
            query = query.where(MembershipTable.is_active.is_(True))
        query = query.order_by(MembershipTable.priority_level.desc(), MembershipTable.id.asc())
        result = await self.session.execute(query)
        return [self._row_to_model(r) for r in result.scalars().all()]

    @staticmethod
    def _row_to_model(row: MembershipTable) -> Membership:
        return Membership(
            id=row.id,
            name=row.name,
            description=row.description,
            tasks_per_day=row.tasks_per_day,
            reward_multiplier=row.reward_multiplier,
            priority_level=row.priority_level,
            distribution_priority=row.distribution_priority,
            price=row.price,
            duration_days=row.duration_days,
            is_active=row.is_active,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class UserMembershipRepository:
    """Repository for user <-> membership bindings."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def grant(
        self,
        user_id: UUID,
        membership_id: int,
        started_at: datetime,
        expires_at: datetime | None,
    ) -> UserMembership:
        """Bind a user to a membership, replacing any active binding for the same pair."""
        await self.session.execute(
            update(UserMembershipTable)
            .where(
                UserMembershipTable.user_id == user_id,
                UserMembershipTable.membership_id == membership_id,
                UserMembershipTable.is_active.is_(True),
            )
            .values(is_active=False)
        )
        row = UserMembershipTable(
            user_id=user_id,
            membership_id=membership_id,
            started_at=started_at,
            expires_at=expires_at,
            is_active=True,
            last_reset_date=None,
            daily_tasks_completed=0,
            created_at=utc_now(),
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get_effective(
        self,
        user_id: UUID,
        now: datetime,
        for_update: bool = False,
    ) -> tuple[UserMembership, Membership] | None:
        """Highest priority_level current binding; newest started_at wins ties."""
        query = (
            select(UserMembershipTable, MembershipTable)
            .join(MembershipTable, MembershipTable.id == UserMembershipTable.membership_id)
            .where(
                UserMembershipTable.user_id == user_id,
                current_binding_clause(now),
                MembershipTable.is_active.is_(True),
            )
            .order_by(
                MembershipTable.priority_level.desc(),
                UserMembershipTable.started_at.desc(),
                UserMembershipTable.id.desc(),
            )
            .limit(1)
        )
        if for_update:
            query = query.with_for_update(of=UserMembershipTable)

        result = await self.session.execute(query)
        pair = result.one_or_none()
        if pair is None:
            return None
        binding_row, membership_row = pair
        return (
            self._row_to_model(binding_row),
            MembershipRepository._row_to_model(membership_row),
        )

    async def increment_daily_completed(self, binding_user_id: UUID, membership_id: int) -> None:
        await self.session.execute(
            update(UserMembershipTable)
            .where(
                UserMembershipTable.user_id == binding_user_id,
                UserMembershipTable.membership_id == membership_id,
                UserMembershipTable.is_active.is_(True),
            )
            .values(daily_tasks_completed=UserMembershipTable.daily_tasks_completed + 1)
        )

    async def reset_daily_counters(self, today: date) -> int:
        """Zero daily counters on every binding not yet reset today."""
        result = await self.session.execute(
            update(UserMembershipTable)
            .where(
                or_(
                    UserMembershipTable.last_reset_date.is_(None),
                    UserMembershipTable.last_reset_date != today,
                )
            )
            .values(daily_tasks_completed=0, last_reset_date=today)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    def _row_to_model(row: UserMembershipTable) -> UserMembership:
        return UserMembership(
            id=row.id,
            user_id=row.user_id,
            membership_id=row.membership_id,
            started_at=row.started_at,
            expires_at=row.expires_at,
            is_active=row.is_active,
            last_reset_date=row.last_reset_date,
            daily_tasks_completed=row.daily_tasks_completed,
        )


class UserRepository:
    """Repository for members."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        username: str,
        email: str,
        referral_code: str,
        referred_by_id: UUID | None = None,
    ) -> User:
        """Insert a user. Unique violations surface as IntegrityError."""
        row = UserTable(
            id=uuid4(),
            username=username,
            email=email,
            referral_code=referral_code,
            referred_by_id=referred_by_id,
            direct_referrals_count=0,
            indirect_referrals_count=0,
            total_points=Decimal("0.00"),
            is_active=True,
            created_at=utc_now(),
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get(self, user_id: UUID) -> User | None:
        result = await self.session.execute(
            select(UserTable)
            .where(UserTable.id == user_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def get_by_referral_code(self, referral_code: str) -> User | None:
        result = await self.session.execute(
            select(UserTable).where(UserTable.referral_code == referral_code)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def find_conflict(self, username: str, email: str) -> Optional[str]:
        """Return the name of the first unique field already taken, if any."""
        result = await self.session.execute(
            select(UserTable.username, UserTable.email).where(
                or_(UserTable.username == username, UserTable.email == email)
            )
        )
        for row in result:
            if row.username == username:
                return "username"
            return "email"
        return None

    async def referral_code_exists(self, referral_code: str) -> bool:
        result = await self.session.execute(
            select(exists().where(UserTable.referral_code == referral_code))
        )
        return bool(result.scalar())

    async def add_points(self, user_id: UUID, amount: Decimal) -> None:
        await self.session.execute(
            update(UserTable)
            .where(UserTable.id == user_id)
            .values(total_points=UserTable.total_points + amount)
        )

    async def increment_referral_count(self, user_id: UUID, referral_type: ReferralType) -> None:
        if referral_type == ReferralType.DIRECT:
            values = {"direct_referrals_count": UserTable.direct_referrals_count + 1}
        else:
            values = {"indirect_referrals_count": UserTable.indirect_referrals_count + 1}
        await self.session.execute(
            update(UserTable).where(UserTable.id == user_id).values(**values)
        )

    async def list_distribution_candidates(self, now: datetime) -> list[UUID]:
        """Active users holding a current binding, highest-priority memberships first."""
        best = (
            select(
                UserMembershipTable.user_id.label("user_id"),
                func.max(MembershipTable.distribution_priority).label("distribution_priority"),
                func.max(MembershipTable.priority_level).label("priority_level"),
            )
            .join(MembershipTable, MembershipTable.id == UserMembershipTable.membership_id)
            .where(current_binding_clause(now), MembershipTable.is_active.is_(True))
            .group_by(UserMembershipTable.user_id)
            .subquery()
        )
        result = await self.session.execute(
            select(UserTable.id)
            .join(best, best.c.user_id == UserTable.id)
            .where(UserTable.is_active.is_(True))
            .order_by(
                best.c.distribution_priority.desc(),
                best.c.priority_level.desc(),
                UserTable.created_at.asc(),
                UserTable.id.asc(),
            )
        )
        return list(result.scalars().all())

    @staticmethod
    def _row_to_model(row: UserTable) -> User:
        return User(
            id=row.id,
            username=row.username,
            email=row.email,
            referral_code=row.referral_code,
            referred_by_id=row.referred_by_id,
            direct_referrals_count=row.direct_referrals_count,
            indirect_referrals_count=row.indirect_referrals_count,
            total_points=row.total_points,
            is_active=row.is_active,
            created_at=row.created_at,
        )


class TaskRepository:
    """Repository for the task catalog and its lifetime counters."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, command: CreateTaskCommand) -> Task:
        now = utc_now()
        row = TaskTable(
            **command.model_dump(),
            task_completion_count=0,
            task_distribution_count=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def update(self, task_id: int, command: UpdateTaskCommand) -> bool:
        """
        Apply a partial update.

        A new ``threshold_value`` only applies while it is at least the
        task's ``task_distribution_count``. Returns False when no row matched
        (unknown task, or threshold below the distributed count).
        """
        values: dict[str, Any] = command.model_dump(exclude_unset=True)
        if not values:
            return await self.get(task_id) is not None

        values["updated_at"] = utc_now()
        query = update(TaskTable).where(TaskTable.id == task_id)
        if "threshold_value" in values:
            query = query.where(TaskTable.task_distribution_count <= values["threshold_value"])
        result = await self.session.execute(query.values(**values))
        return result.rowcount == 1

    async def get(self, task_id: int) -> Task | None:
        result = await self.session.execute(
            select(TaskTable)
            .where(TaskTable.id == task_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def list_tasks(
        self,
        distributable_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Task]:
        query = select(TaskTable)
        if distributable_only:
            query = query.where(distributable_clause())
        query = (
            query.order_by(priority_rank(), TaskTable.created_at.asc(), TaskTable.id.asc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(query)
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def list_candidates(
        self,
        limit: int,
        exclude_ids: set[int] | None = None,
    ) -> list[Task]:
        """Distributable tasks outside ``exclude_ids``, in distribution order."""
        if limit <= 0:
            return []

        query = select(TaskTable).where(distributable_clause())
        if exclude_ids:
            query = query.where(TaskTable.id.not_in(sorted(exclude_ids)))
        query = (
            query.order_by(priority_rank(), TaskTable.created_at.asc(), TaskTable.id.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def claim_for_distribution(self, task_id: int) -> bool:
        """Compare-and-swap increment of task_distribution_count.

        The eligibility predicate is re-evaluated by the UPDATE itself, so
        concurrent claimers can never push the count past threshold_value.
        """
        result = await self.session.execute(
            update(TaskTable)
            .where(TaskTable.id == task_id, distributable_clause())
            .values(
                task_distribution_count=TaskTable.task_distribution_count + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increment_completion(self, task_id: int) -> None:
        await self.session.execute(
            update(TaskTable)
            .where(TaskTable.id == task_id)
            .values(
                task_completion_count=TaskTable.task_completion_count + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

    async def counts(self) -> dict[str, int]:
        total = await self.session.scalar(select(func.count()).select_from(TaskTable))
        active = await self.session.scalar(
            select(func.count()).select_from(TaskTable).where(TaskTable.is_active.is_(True))
        )
        available = await self.session.scalar(
            select(func.count()).select_from(TaskTable).where(distributable_clause())
        )
        return {"total": total or 0, "active": active or 0, "available_for_distribution": available or 0}

    @staticmethod
    def _row_to_model(row: TaskTable) -> Task:
        return Task(
            id=row.id,
            title=row.title,
            description=row.description,
            category=row.category,
            priority=row.priority,
            threshold_value=row.threshold_value,
            task_completion_count=row.task_completion_count,
            task_distribution_count=row.task_distribution_count,
            is_active=row.is_active,
            task_status=row.task_status,
            requires_photo=row.requires_photo,
            base_reward=row.base_reward,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class AssignmentRepository:
    """Repository for the assignment ledger."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: UUID,
        task: Task,
        membership: Membership,
        assigned_at: datetime,
        expires_at: datetime,
    ) -> Assignment:
        """Insert a pending assignment. A repeat (user, task) raises IntegrityError."""
        multiplier = membership.reward_multiplier
        row = AssignmentTable(
            user_id=user_id,
            task_id=task.id,
            membership_id=membership.id,
            status=AssignmentStatus.PENDING,
            assigned_at=assigned_at,
            expires_at=expires_at,
            base_points=task.base_reward,
            vip_multiplier=multiplier,
            final_reward=(task.base_reward * multiplier).quantize(Decimal("0.01")),
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get(self, assignment_id: int) -> Assignment | None:
        result = await self.session.execute(
            select(AssignmentTable)
            .where(AssignmentTable.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def count_pending_between(self, user_id: UUID, start: datetime, end: datetime) -> int:
        """Pending assignments with assigned_at in [start, end)."""
        count = await self.session.scalar(
            select(func.count())
            .select_from(AssignmentTable)
            .where(
                AssignmentTable.user_id == user_id,
                AssignmentTable.status == AssignmentStatus.PENDING,
                AssignmentTable.assigned_at >= start,
                AssignmentTable.assigned_at < end,
            )
        )
        return count or 0

    async def assigned_task_ids(self, user_id: UUID) -> set[int]:
        """Every task ever bound to the user, regardless of status."""
        result = await self.session.execute(
            select(AssignmentTable.task_id).where(AssignmentTable.user_id == user_id)
        )
        return set(result.scalars().all())

    async def list_for_user(
        self,
        user_id: UUID,
        status: AssignmentStatus | None = None,
        limit: int = 50,
    ) -> list[Assignment]:
        query = select(AssignmentTable).where(AssignmentTable.user_id == user_id)
        if status:
            query = query.where(AssignmentTable.status == status)
        query = query.order_by(AssignmentTable.assigned_at.desc(), AssignmentTable.id.desc()).limit(limit)
        result = await self.session.execute(query)
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def mark_completed(
        self,
        assignment_id: int,
        now: datetime,
        photo_url: str | None = None,
    ) -> bool:
        """Single-use pending -> completed transition. False if it already happened."""
        result = await self.session.execute(
            update(AssignmentTable)
            .where(
                AssignmentTable.id == assignment_id,
                AssignmentTable.status == AssignmentStatus.PENDING,
                AssignmentTable.expires_at >= now,
            )
            .values(
                status=AssignmentStatus.COMPLETED,
                completed_at=now,
                completion_photo_url=photo_url,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def expire_stale(self, now: datetime) -> int:
        """Bulk pending -> expired for everything past expires_at."""
        result = await self.session.execute(
            update(AssignmentTable)
            .where(
                AssignmentTable.status == AssignmentStatus.PENDING,
                AssignmentTable.expires_at < now,
            )
            .values(status=AssignmentStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def status_counts(self) -> dict[str, int]:
        result = await self.session.execute(
            select(AssignmentTable.status, func.count()).group_by(AssignmentTable.status)
        )
        counts = {status.value: 0 for status in AssignmentStatus}
        for status, count in result:
            counts[AssignmentStatus(status).value] = count
        counts["total"] = sum(counts[s.value] for s in AssignmentStatus)
        return counts

    @staticmethod
    def _row_to_model(row: AssignmentTable) -> Assignment:
        return Assignment(
            id=row.id,
            user_id=row.user_id,
            task_id=row.task_id,
            membership_id=row.membership_id,
            status=row.status,
            assigned_at=row.assigned_at,
            expires_at=row.expires_at,
            base_points=row.base_points,
            vip_multiplier=row.vip_multiplier,
            final_reward=row.final_reward,
            completed_at=row.completed_at,
            completion_photo_url=row.completion_photo_url,
        )


class AccountRepository:
    """Repository for per-user balances."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, user_id: UUID) -> Account:
        row = AccountTable(
            user_id=user_id,
            balance=Decimal("0.00"),
            total_bonus=Decimal("0.00"),
            tasks_income=Decimal("0.00"),
            referral_income=Decimal("0.00"),
            total_earned=Decimal("0.00"),
            total_withdrawals=Decimal("0.00"),
            is_active=True,
            created_at=utc_now(),
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get(self, user_id: UUID) -> Account | None:
        result = await self.session.execute(
            select(AccountTable)
            .where(AccountTable.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def credit(self, user_id: UUID, amount: Decimal, income_type: IncomeType) -> None:
        """Atomically add ``amount`` to the balance and the matching income columns."""
        if await self.get(user_id) is None:
            await self.create(user_id)

        values: dict[str, Any] = {
            "balance": AccountTable.balance + amount,
            "total_earned": AccountTable.total_earned + amount,
            "last_activity_at": utc_now(),
        }
        if income_type == IncomeType.TASK:
            values["tasks_income"] = AccountTable.tasks_income + amount
        else:
            values["referral_income"] = AccountTable.referral_income + amount
            values["total_bonus"] = AccountTable.total_bonus + amount

        await self.session.execute(
            update(AccountTable)
            .where(AccountTable.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _row_to_model(row: AccountTable) -> Account:
        return Account(
            user_id=row.user_id,
            balance=row.balance,
            total_bonus=row.total_bonus,
            tasks_income=row.tasks_income,
            referral_income=row.referral_income,
            total_earned=row.total_earned,
            total_withdrawals=row.total_withdrawals,
            is_active=row.is_active,
            last_activity_at=row.last_activity_at,
        )


class ReferralRepository:
    """Repository for the referral bonus ledger."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists_for(self, referred_user_id: UUID, referral_type: ReferralType) -> bool:
        result = await self.session.execute(
            select(
                exists().where(
                    ReferralTable.referred_user_id == referred_user_id,
                    ReferralTable.referral_type == referral_type,
                )
            )
        )
        return bool(result.scalar())

    async def create(
        self,
        referrer_id: UUID,
        referred_user_id: UUID,
        referral_type: ReferralType,
        bonus_amount: Decimal,
    ) -> Referral:
        """Record a paid bonus. A second bonus for the same level raises IntegrityError."""
        now = utc_now()
        row = ReferralTable(
            referrer_id=referrer_id,
            referred_user_id=referred_user_id,
            referral_type=referral_type,
            bonus_amount=bonus_amount,
            bonus_paid_at=now,
            created_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return Referral(
            referrer_id=row.referrer_id,
            referred_user_id=row.referred_user_id,
            referral_type=row.referral_type,
            bonus_amount=row.bonus_amount,
            bonus_paid_at=row.bonus_paid_at,
        )

    async def list_for_referrer(self, referrer_id: UUID) -> list[Referral]:
        result = await self.session.execute(
            select(ReferralTable)
            .where(ReferralTable.referrer_id == referrer_id)
            .order_by(ReferralTable.created_at.asc())
        )
        return [
            Referral(
                referrer_id=r.referrer_id,
                referred_user_id=r.referred_user_id,
                referral_type=r.referral_type,
                bonus_amount=r.bonus_amount,
                bonus_paid_at=r.bonus_paid_at,
            )
            for r in result.scalars().all()
        ]
