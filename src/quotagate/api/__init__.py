"""QuotaGate REST API."""

from quotagate.api.router import router

__all__ = ["router"]
