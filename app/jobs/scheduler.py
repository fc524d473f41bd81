"""
APScheduler Configuration

Background job scheduler owned by the application lifespan:

- reap_expired_orders: every ORDER_CLEANUP_INTERVAL_MINUTES (default hourly)
- purge_expired_listings: daily at LISTING_CLEANUP_HOUR (default midnight)

Jobs receive their session factory from the scheduler, so tests can run the
same coroutines directly against a throwaway database.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.jobs.listing_jobs import purge_expired_listings
from app.jobs.order_jobs import reap_expired_orders

logger = logging.getLogger(__name__)


async def run_job(job_name: str, func: Callable[..., Awaitable[Any]], **kwargs) -> Optional[Any]:
    """
    Wrapper to run a job from the scheduler.

    A failing run is logged; the next scheduled run still happens.
    """
    try:
        return await func(**kwargs)
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")
        return None


class JobScheduler:
    """Owns the AsyncIOScheduler and its jobs; start() and shutdown() bracket the app."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        timezone: Optional[str] = None,
    ):
        if session_factory is None:
            from app.database import async_session_factory
            session_factory = async_session_factory
        self.session_factory = session_factory

        self.scheduler = AsyncIOScheduler(
            jobstores={
                'default': MemoryJobStore()
            },
            executors={
                'default': AsyncIOExecutor(),
            },
            job_defaults={
                'coalesce': True,  # Combine multiple pending executions into one
                'max_instances': 1,  # Only one instance of each job at a time
                'misfire_grace_time': settings.JOB_MISFIRE_GRACE_SECONDS,
            },
            timezone=timezone or settings.SCHEDULER_TIMEZONE,
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def register_jobs(self) -> None:
        self.scheduler.add_job(
            run_job,
            'interval',
            minutes=settings.ORDER_CLEANUP_INTERVAL_MINUTES,
            args=['reap_expired_orders', reap_expired_orders],
            kwargs={'session_factory': self.session_factory},
            id='reap_expired_orders',
            name='Reap Expired Orders',
            replace_existing=True,
        )

        self.scheduler.add_job(
            run_job,
            'cron',
            hour=settings.LISTING_CLEANUP_HOUR,
            minute=0,
            args=['purge_expired_listings', purge_expired_listings],
            kwargs={'session_factory': self.session_factory},
            id='purge_expired_listings',
            name='Purge Expired Listings',
            replace_existing=True,
        )

    def start(self) -> None:
        """Start the background job scheduler. Must be called with a running event loop."""
        if self.scheduler.running:
            return

        self.register_jobs()
        self.scheduler.start()
        logger.info("Background job scheduler started")

        for job in self.scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the scheduler gracefully."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Background job scheduler stopped")

    def get_job_status(self) -> list:
        """Get status of all scheduled jobs."""
        return [
            {
                'id': job.id,
                'name': job.name,
                'next_run_time': str(job.next_run_time) if getattr(job, 'next_run_time', None) else None,
                'trigger': str(job.trigger),
            }
            for job in self.scheduler.get_jobs()
        ]
