"""API dependencies."""

import logging
import secrets

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quotagate.config import Environment, settings
from quotagate.db.base import async_session_factory
from quotagate.integrations.notifier import Notifier, get_notifier

logger = logging.getLogger("quotagate.api")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for the services; each operation owns its transactions."""
    return async_session_factory


def get_event_notifier() -> Notifier:
    return get_notifier()


async def verify_api_key(
    authorization: str | None = Header(None),
    x_api_key: str | None = Header(None, alias="X-API-Key"),
) -> str:
    """
    Verify the shared API key.

    Accepts ``Authorization: Bearer <key>`` or ``X-API-Key``. Returns the auth
    mode on success.

    Security: fails closed. Without a configured key, and outside explicit
    insecure dev mode, every request is rejected.
    """
    if settings.allow_insecure_dev and settings.env == Environment.DEVELOPMENT:
        return "insecure_dev"

    api_key = None
    if authorization and authorization.startswith("Bearer "):
        api_key = authorization[7:]
    elif x_api_key:
        api_key = x_api_key

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Use Authorization: Bearer <key> or X-API-Key header",
        )

    if not settings.api_key:
        logger.error("SECURITY VIOLATION: No API key configured. Set QUOTAGATE_API_KEY.")
        raise HTTPException(
            status_code=503,
            detail="Server misconfigured: authentication not properly initialized",
        )

    if not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return "api_key"


def validate_auth_config() -> None:
    """
    Validate authentication configuration at startup.

    Raises:
        RuntimeError: If configuration is insecure for the current environment
    """
    if settings.allow_insecure_dev and settings.env != Environment.DEVELOPMENT:
        raise RuntimeError(
            f"SECURITY ERROR: allow_insecure_dev=true is only permitted in development. "
            f"Current environment: {settings.env.value}. "
            f"Set QUOTAGATE_ALLOW_INSECURE_DEV=false for {settings.env.value}."
        )

    if not settings.allow_insecure_dev and not settings.api_key:
        raise RuntimeError("SECURITY ERROR: QUOTAGATE_API_KEY must be set")

    if settings.allow_insecure_dev:
        logger.warning(
            "=" * 80 + "\n"
            "WARNING: Running in INSECURE DEV MODE\n"
            "  - Authentication is DISABLED\n"
            "  - Set QUOTAGATE_ALLOW_INSECURE_DEV=false for any deployment\n"
            + "=" * 80
        )
    else:
        logger.info(f"Authentication enabled: shared API key for {settings.env.value}")
