"""QuotaGate main application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from quotagate import __version__
from quotagate.api import router
from quotagate.api.deps import validate_auth_config
from quotagate.config import settings
from quotagate.db.base import async_session_factory, close_db, init_db
from quotagate.integrations.notifier import get_notifier
from quotagate.tasks.scheduler import DailyScheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("quotagate")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting QuotaGate server...")
    logger.info(f"Environment: {settings.env.value}, day timezone: {settings.day_timezone}")

    # Validate authentication configuration (fail fast if insecure)
    validate_auth_config()

    await init_db()
    logger.info("Database initialized")

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = DailyScheduler(async_session_factory, get_notifier())
        await scheduler.start()
        logger.info(f"Daily scheduler started (runs at {settings.scheduler_run_at})")

    yield

    logger.info("Shutting down QuotaGate server...")
    if scheduler:
        await scheduler.stop()
    await get_notifier().drain()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="QuotaGate",
    description="Daily task assignment and distribution engine for quota-based memberships",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(router)


def main():
    """Entry point for the application."""
    uvicorn.run(
        "quotagate.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
