"""Background tasks."""

from quotagate.tasks.scheduler import DailyScheduler, run_daily_cycle

__all__ = ["DailyScheduler", "run_daily_cycle"]
