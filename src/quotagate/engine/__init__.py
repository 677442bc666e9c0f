"""QuotaGate engine - eligibility, distribution, sweep and settlement."""

from quotagate.engine.catalog import CatalogService
from quotagate.engine.completion import CompletionService
from quotagate.engine.distribution import DistributionEngine
from quotagate.engine.eligibility import Eligibility, EligibilityResolver
from quotagate.engine.errors import (
    DistributionRunFailed,
    InvariantViolation,
    NoActiveMembership,
    PersistenceFailure,
    QuotaGateError,
    TaskPersistenceFailure,
    TaskUnavailable,
)
from quotagate.engine.settlement import process_signup_referral, settle_completion
from quotagate.engine.sweeper import DailySweeper

__all__ = [
    "CatalogService",
    "CompletionService",
    "DailySweeper",
    "DistributionEngine",
    "DistributionRunFailed",
    "Eligibility",
    "EligibilityResolver",
    "InvariantViolation",
    "NoActiveMembership",
    "PersistenceFailure",
    "QuotaGateError",
    "TaskPersistenceFailure",
    "TaskUnavailable",
    "process_signup_referral",
    "settle_completion",
]
