"""QuotaGate command line.

The scheduler collaborator can drive the daily cycle from cron instead of the
in-process scheduler:

    quotagate daily-cycle        # reset, then assign
    quotagate reset-daily
    quotagate assign-daily
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional

from quotagate.config import settings
from quotagate.db.base import async_session_factory, close_db, engine, init_db
from quotagate.engine import DailySweeper, DistributionEngine, QuotaGateError
from quotagate.integrations.notifier import get_notifier
from quotagate.tasks.scheduler import run_daily_cycle

logger = logging.getLogger("quotagate.cli")


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _run(command: str) -> int:
    notifier = get_notifier()
    try:
        if command == "init-db":
            await init_db(engine)
            _print({"status": "initialized"})
        elif command == "reset-daily":
            result = await DailySweeper(async_session_factory).reset_daily_state()
            _print(result.model_dump(mode="json"))
        elif command == "assign-daily":
            result = await DistributionEngine(async_session_factory, notifier).assign_daily_tasks()
            _print(result.model_dump(mode="json"))
        elif command == "daily-cycle":
            reset, distribution = await run_daily_cycle(async_session_factory, notifier)
            _print(
                {
                    "reset": reset.model_dump(mode="json"),
                    "distribution": distribution.model_dump(mode="json"),
                }
            )
        elif command == "stats":
            _print(await DistributionEngine(async_session_factory).get_distribution_stats())
        await notifier.drain()
    except QuotaGateError as e:
        logger.error(f"{command} failed: [{e.code}] {e.message}")
        return 1
    finally:
        await close_db()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="quotagate", description="QuotaGate task distribution")
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help=f"Logging level (default: {settings.log_level})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("serve", help="Run the HTTP API server")
    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("reset-daily", help="Expire stale assignments and reset daily counters")
    subparsers.add_parser("assign-daily", help="Run one batch distribution")
    subparsers.add_parser("daily-cycle", help="reset-daily followed by assign-daily")
    subparsers.add_parser("stats", help="Print distribution statistics")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "serve":
        from quotagate.main import main as serve

        serve()
        return 0

    return asyncio.run(_run(args.command))


if __name__ == "__main__":
    sys.exit(main())
