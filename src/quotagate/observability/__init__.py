"""Observability helpers for QuotaGate."""

from quotagate.observability.metrics import metrics

__all__ = ["metrics"]
