"""Catalog administration and member registration."""

import logging
import secrets
import string
from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quotagate.config import settings
from quotagate.db.repositories import (
    AccountRepository,
    MembershipRepository,
    TaskRepository,
    UserMembershipRepository,
    UserRepository,
)
from quotagate.engine.errors import (
    DuplicateMembership,
    DuplicateUser,
    InvalidReferralCode,
    MembershipNotFound,
    QuotaGateError,
    TaskNotFound,
    ThresholdBelowDistributed,
    UserNotFound,
)
from quotagate.engine.settlement import process_signup_referral
from quotagate.integrations.notifier import Notifier
from quotagate.models import (
    Account,
    CreateMembershipCommand,
    CreateTaskCommand,
    GrantMembershipCommand,
    Membership,
    RegisterUserCommand,
    Task,
    UpdateMembershipCommand,
    UpdateTaskCommand,
    User,
    UserMembership,
)
from quotagate.utils.time import utc_now

logger = logging.getLogger(__name__)

REFERRAL_CODE_LENGTH = 8
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
_REFERRAL_CODE_ATTEMPTS = 10


def generate_referral_code() -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


class CatalogService:
    """Typed admin commands plus registration and membership grants."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[Notifier] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier

    # =========================================================================
    # Memberships
    # =========================================================================

    async def create_membership(self, command: CreateMembershipCommand) -> Membership:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    membership = await MembershipRepository(session).create(command)
        except IntegrityError as e:
            raise DuplicateMembership(command.name) from e
        logger.info(f"Created membership {membership.id} ({membership.name})")
        return membership

    async def update_membership(
        self, membership_id: int, command: UpdateMembershipCommand
    ) -> Membership:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    membership = await MembershipRepository(session).update(membership_id, command)
                    if membership is None:
                        raise MembershipNotFound(membership_id)
        except IntegrityError as e:
            raise DuplicateMembership(command.name or "") from e
        return membership

    async def list_memberships(self, active_only: bool = False) -> list[Membership]:
        async with self.session_factory() as session:
            return await MembershipRepository(session).list_memberships(active_only=active_only)

    # =========================================================================
    # Tasks
    # =========================================================================

    async def create_task(self, command: CreateTaskCommand) -> Task:
        async with self.session_factory() as session:
            async with session.begin():
                task = await TaskRepository(session).create(command)
        logger.info(f"Created task {task.id} (threshold {task.threshold_value})")
        return task

    async def update_task(self, task_id: int, command: UpdateTaskCommand) -> Task:
        """
        Raises:
            TaskNotFound: unknown task
            ThresholdBelowDistributed: new threshold is under the distributed count
        """
        async with self.session_factory() as session:
            async with session.begin():
                tasks = TaskRepository(session)
                applied = await tasks.update(task_id, command)
                task = await tasks.get(task_id)
                if task is None:
                    raise TaskNotFound(task_id)
                if not applied:
                    raise ThresholdBelowDistributed(
                        task_id, command.threshold_value, task.task_distribution_count
                    )
        return task

    async def get_task(self, task_id: int) -> Task:
        async with self.session_factory() as session:
            task = await TaskRepository(session).get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    async def list_tasks(
        self,
        distributable_only: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Task]:
        limit = min(limit or settings.default_list_limit, settings.max_list_limit)
        async with self.session_factory() as session:
            return await TaskRepository(session).list_tasks(distributable_only, limit, offset)

    # =========================================================================
    # Users
    # =========================================================================

    async def register_user(self, command: RegisterUserCommand) -> User:
        """
        Create a user with a fresh referral code and an empty account.

        When a referral code is given, the referrer chain is credited in the
        same transaction.

        Raises:
            DuplicateUser: username or email already taken
            InvalidReferralCode: the referral code matches no user
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    users = UserRepository(session)

                    conflict = await users.find_conflict(command.username, command.email)
                    if conflict:
                        raise DuplicateUser(conflict)

                    referred_by_id = None
                    if command.referral_code:
                        referrer = await users.get_by_referral_code(command.referral_code)
                        if referrer is None:
                            raise InvalidReferralCode(command.referral_code)
                        referred_by_id = referrer.id

                    user = await users.create(
                        username=command.username,
                        email=command.email,
                        referral_code=await self._unique_referral_code(users),
                        referred_by_id=referred_by_id,
                    )
                    await AccountRepository(session).create(user.id)
                    settlement = await process_signup_referral(session, user)
        except IntegrityError as e:
            # Lost a race with a concurrent registration
            raise DuplicateUser("username or email") from e

        logger.info(f"Registered user {user.id} ({user.username})")
        if self.notifier:
            self.notifier.publish_all(settlement.events)
        return user

    @staticmethod
    async def _unique_referral_code(users: UserRepository) -> str:
        for _ in range(_REFERRAL_CODE_ATTEMPTS):
            code = generate_referral_code()
            if not await users.referral_code_exists(code):
                return code
        raise QuotaGateError("Could not generate a unique referral code", "REFERRAL_CODE_EXHAUSTED")

    async def get_user(self, user_id: UUID) -> User:
        async with self.session_factory() as session:
            user = await UserRepository(session).get(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    async def get_account(self, user_id: UUID) -> Account:
        async with self.session_factory() as session:
            account = await AccountRepository(session).get(user_id)
            if account is None:
                if await UserRepository(session).get(user_id) is None:
                    raise UserNotFound(user_id)
                return Account(user_id=user_id)
        return account

    async def grant_membership(self, user_id: UUID, command: GrantMembershipCommand) -> UserMembership:
        """
        Bind a user to a membership starting now.

        Any active binding for the same pair is deactivated first. The binding
        expires after the command's ``duration_days``, else the membership's;
        with neither it never expires.
        """
        now = utc_now()
        async with self.session_factory() as session:
            async with session.begin():
                if await UserRepository(session).get(user_id) is None:
                    raise UserNotFound(user_id)
                membership = await MembershipRepository(session).get(command.membership_id)
                if membership is None or not membership.is_active:
                    raise MembershipNotFound(command.membership_id)

                duration = command.duration_days or membership.duration_days
                expires_at = now + timedelta(days=duration) if duration else None
                binding = await UserMembershipRepository(session).grant(
                    user_id, membership.id, now, expires_at
                )

        logger.info(f"Granted membership {membership.name} to user {user_id} until {expires_at}")
        return binding
