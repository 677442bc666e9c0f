"""
Pytest fixtures for QuotaGate tests.
"""

import os
import tempfile
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure test config is set before importing quotagate modules.
os.environ.setdefault("QUOTAGATE_ALLOW_INSECURE_DEV", "true")
os.environ.setdefault("QUOTAGATE_ENV", "development")
os.environ.setdefault(
    "QUOTAGATE_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'quotagate_test.db')}",
)
os.environ.pop("QUOTAGATE_NOTIFICATION_WEBHOOK_URL", None)

from quotagate.db.base import build_engine, build_session_factory, init_db
from quotagate.db.repositories import (
    AccountRepository,
    MembershipRepository,
    TaskRepository,
    UserMembershipRepository,
    UserRepository,
)
from quotagate.models import (
    CreateMembershipCommand,
    CreateTaskCommand,
    Membership,
    Task,
    TaskPriority,
    User,
    UserMembership,
)
from quotagate.observability.metrics import metrics
from quotagate.utils.time import utc_now

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test, built the same way as production."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'quotagate.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield


class Seeder:
    """Writes fixtures through the repositories, one short transaction each."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def membership(self, **overrides) -> Membership:
        n = self._next()
        fields = {
            "name": f"tier-{n}",
            "tasks_per_day": 2,
            "reward_multiplier": Decimal("1.00"),
        }
        fields.update(overrides)
        async with self.session_factory() as session, session.begin():
            return await MembershipRepository(session).create(CreateMembershipCommand(**fields))

    async def task(self, **overrides) -> Task:
        n = self._next()
        fields = {
            "title": f"task-{n}",
            "threshold_value": 10,
            "base_reward": Decimal("1.00"),
            "priority": TaskPriority.MEDIUM,
        }
        fields.update(overrides)
        async with self.session_factory() as session, session.begin():
            return await TaskRepository(session).create(CreateTaskCommand(**fields))

    async def user(self, referred_by: Optional[User] = None, **overrides) -> User:
        n = self._next()
        fields = {
            "username": f"user{n}",
            "email": f"user{n}@example.com",
            "referral_code": f"CODE{n:04d}",
        }
        fields.update(overrides)
        async with self.session_factory() as session, session.begin():
            user = await UserRepository(session).create(
                referred_by_id=referred_by.id if referred_by else None, **fields
            )
            await AccountRepository(session).create(user.id)
        return user

    async def grant(
        self,
        user_id: UUID,
        membership_id: int,
        started_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
    ) -> UserMembership:
        started_at = started_at or utc_now() - timedelta(minutes=5)
        async with self.session_factory() as session, session.begin():
            return await UserMembershipRepository(session).grant(
                user_id, membership_id, started_at, expires_at
            )

    async def get_task(self, task_id: int) -> Task:
        async with self.session_factory() as session:
            return await TaskRepository(session).get(task_id)


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
async def client(session_factory):
    """Async test client wired to the per-test database."""
    from quotagate.api.deps import get_session_factory
    from quotagate.main import app

    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
