import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from analytics import get_openai_client, refresh_all_pattern_snapshots
from repository import HabitRepository

logger = logging.getLogger(__name__)


async def run_pattern_refresh(repository: HabitRepository):
    """Regenerate stale pattern analyses for all users."""
    logger.info("Starting weekly pattern refresh...")
    refreshed = await refresh_all_pattern_snapshots(repository, get_openai_client())
    logger.info("Completed weekly pattern refresh for %d users.", len(refreshed))


def init_scheduler(repository: HabitRepository) -> AsyncIOScheduler:
    """Initialize the scheduler to refresh pattern analyses weekly on Mondays."""
    scheduler = AsyncIOScheduler()

    # Every Monday at 5 AM UTC
    scheduler.add_job(
        run_pattern_refresh,
        CronTrigger(day_of_week="mon", hour=5, minute=0),
        args=[repository],
        id="refresh_patterns",
        name="Refresh weekly pattern analyses",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler initialized - pattern analyses refresh weekly on Mondays at 5 AM UTC")
    return scheduler
