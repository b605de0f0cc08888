"""Cron trigger for recurring runs."""

import logging
from typing import Callable, Optional

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from src.portal.config import AgentSettings

JOB_ID = "portal-agent-run"


def build_trigger(settings: AgentSettings) -> CronTrigger:
    return CronTrigger.from_crontab(settings.cron_schedule, timezone=settings.timezone)


def schedule_job(scheduler: BaseScheduler, settings: AgentSettings, job: Callable[[], None]):
    # One instance at a time: a trigger that fires while the previous run is
    # still watching lessons is skipped instead of sharing the session.
    return scheduler.add_job(
        job,
        trigger=build_trigger(settings),
        id=JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )


def start_scheduler(
    settings: AgentSettings,
    job: Callable[[], None],
    scheduler: Optional[BaseScheduler] = None,
) -> BaseScheduler:
    """Register the run job and block serving the cron trigger."""
    scheduler = scheduler or BlockingScheduler(timezone=settings.timezone)
    schedule_job(scheduler, settings, job)
    logging.info("🔁 Cron enabled: \"%s\" tz:%s", settings.cron_schedule, settings.timezone)
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logging.info("Scheduler stopped.")
    return scheduler
