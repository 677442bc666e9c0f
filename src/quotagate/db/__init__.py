"""QuotaGate database layer."""

from quotagate.db.base import (
    Base,
    async_session_factory,
    build_engine,
    build_session_factory,
    close_db,
    init_db,
)
from quotagate.db.tables import (
    AccountTable,
    AssignmentTable,
    MembershipTable,
    ReferralTable,
    TaskTable,
    UserMembershipTable,
    UserTable,
)

__all__ = [
    "Base",
    "async_session_factory",
    "build_engine",
    "build_session_factory",
    "close_db",
    "init_db",
    "AccountTable",
    "AssignmentTable",
    "MembershipTable",
    "ReferralTable",
    "TaskTable",
    "UserMembershipTable",
    "UserTable",
]
