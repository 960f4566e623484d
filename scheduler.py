"""Scheduling system for the periodic weather fetch."""

import asyncio
import logging
from concurrent.futures import Future
from typing import Coroutine, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from alert_pipeline import AlertPipeline
from config import DEFAULT_FETCH_CRON
from errors import SchedulerError

logger = logging.getLogger(__name__)

WEATHER_JOB_ID = 'weather_fetch'

# Job set printed by the list-jobs command
STATIC_JOBS = [
    {
        "id": WEATHER_JOB_ID,
        "name": "Weather Fetch",
        "schedule": DEFAULT_FETCH_CRON,
        "description": "Every 2 hours: fetch weather for all user cities and send alerts",
    },
]


def parse_cron_expression(expression: str, timezone: str = "UTC") -> CronTrigger:
    """Build a CronTrigger from a cron expression.

    Accepts the six-field form with seconds (``sec min hour day month dow``)
    and the classic five-field form, which fires at second 0. ``?`` is read
    as ``*``. Day-of-week follows APScheduler conventions, so prefer names
    (``mon-fri``) over numbers.
    """
    fields = (expression or "").split()
    if len(fields) == 5:
        fields = ['0'] + fields
    if len(fields) != 6:
        raise SchedulerError(f"Invalid cron expression '{expression}': expected 5 or 6 fields")

    second, minute, hour, day, month, day_of_week = ['*' if f == '?' else f for f in fields]
    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            timezone=timezone
        )
    except ValueError as e:
        raise SchedulerError(f"Invalid cron expression '{expression}': {e}") from e


def _log_background_failure(future: Future):
    if future.cancelled():
        logger.warning("Background task cancelled")
        return
    exc = future.exception()
    if exc is not None:
        logger.error(f"Background task failed: {exc}")


class WeatherAlertScheduler:
    """Runs the alert pipeline on a cron schedule inside an asyncio loop.

    The scheduler also owns the loop reference other threads use to hand
    work to it: ``submit`` lets a Flask request thread start a pass (or a
    welcome email) without waiting for it.
    """

    def __init__(self, pipeline: AlertPipeline, cron_expression: str = DEFAULT_FETCH_CRON):
        """Initialize scheduler; an invalid cron expression fails here."""
        self.pipeline = pipeline
        self.cron_expression = cron_expression
        self.trigger = parse_cron_expression(cron_expression)
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def weather_fetch_job(self):
        """Scheduled job body. Errors are logged, never raised into APScheduler."""
        logger.info("CRON Job: Starting weather fetch...")
        try:
            summary = await self.pipeline.run_once()
            logger.info(f"CRON Job: Weather fetch completed ({summary.alerts_sent} alerts sent)")
        except Exception as e:
            logger.error(f"CRON Job: Weather fetch failed: {e}", exc_info=True)

    def setup_jobs(self):
        """Set up scheduled jobs."""
        self.scheduler.add_job(
            self.weather_fetch_job,
            trigger=self.trigger,
            id=WEATHER_JOB_ID,
            name='Weather Fetch',
            max_instances=1,  # Prevent overlapping scheduled executions
            coalesce=True,
            misfire_grace_time=300,
            replace_existing=True
        )
        logger.info(f"CRON job scheduled: Weather fetch ({self.cron_expression})")

    async def start(self):
        """Start the scheduler on the running event loop."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self._loop = asyncio.get_running_loop()
        self.scheduler = AsyncIOScheduler(event_loop=self._loop)
        self.setup_jobs()
        self.scheduler.start()
        self.is_running = True

        job = self.scheduler.get_job(WEATHER_JOB_ID)
        if job is not None and getattr(job, 'next_run_time', None):
            logger.info(f"Scheduler started, next weather fetch at {job.next_run_time.isoformat()}")
        else:
            logger.info("Scheduler started")

    async def stop(self):
        """Stop the scheduler."""
        if not self.is_running:
            return

        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        self.is_running = False
        self._loop = None
        logger.info("Scheduler stopped")

    def submit(self, coro: Coroutine) -> Future:
        """Run ``coro`` on the scheduler's loop from any thread without waiting."""
        loop = self._loop
        if loop is None or loop.is_closed():
            coro.close()
            raise SchedulerError("Scheduler is not running")

        future = asyncio.run_coroutine_threadsafe(coro, loop)
        future.add_done_callback(_log_background_failure)
        return future
