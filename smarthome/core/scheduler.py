"""Background job scheduler for token housekeeping."""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from smarthome.core.config import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def cleanup_job(authority):
    """Background purge of expired codes and access tokens."""
    try:
        stats = authority.purge_expired()
        logger.info(f"Token cleanup completed: {stats}")
    except Exception as e:
        logger.error(f"Token cleanup failed: {e}")


def start_scheduler(authority):
    """Start the background scheduler."""
    scheduler.add_job(
        cleanup_job,
        trigger=IntervalTrigger(minutes=settings.token_cleanup_interval_minutes),
        args=[authority],
        id="token_cleanup",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started, purging expired tokens every {settings.token_cleanup_interval_minutes} minutes"
    )


def shutdown_scheduler():
    """Graceful shutdown."""
    scheduler.shutdown(wait=False)
    logger.info("Scheduler shut down")
