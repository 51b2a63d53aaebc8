"""
Scheduler Service - runs the daily auto-check and the log cleanup on cron triggers
"""
import logging
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from eol_checker import config
from eol_checker.services.central_log import purge_old_logs

logger = logging.getLogger(__name__)

AUTO_CHECK_JOB_ID = 'scheduled-eol-check'
LOG_CLEANUP_JOB_ID = 'scheduled-log-cleanup'
LOG_CLEANUP_CRON = '0 3 * * *'


def cron_trigger(expression: str) -> CronTrigger:
    """Build a UTC CronTrigger from a five-field cron expression."""
    parts = expression.split()
    if len(parts) != 5:
        raise ValueError(f"Invalid cron expression: {expression}")
    minute, hour, day, month, day_of_week = parts
    return CronTrigger(minute=minute, hour=hour, day=day, month=month,
                       day_of_week=day_of_week, timezone='UTC')


class SchedulerService:
    def __init__(self, auto_check_service, scheduler: Optional[BackgroundScheduler] = None,
                 auto_check_cron: str = config.AUTO_CHECK_SCHEDULE_CRON,
                 log_cleanup_cron: str = LOG_CLEANUP_CRON):
        self.auto_check_service = auto_check_service
        self.scheduler = scheduler or BackgroundScheduler(timezone='UTC')
        self.auto_check_cron = auto_check_cron
        self.log_cleanup_cron = log_cleanup_cron
        self.scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    def register_jobs(self) -> None:
        self.scheduler.add_job(
            func=self.auto_check_service.scheduled_check,
            trigger=cron_trigger(self.auto_check_cron),
            id=AUTO_CHECK_JOB_ID,
            name='Daily EOL auto-check',
            replace_existing=True,
            max_instances=1,  # Prevent overlapping executions
        )
        self.scheduler.add_job(
            func=purge_old_logs,
            trigger=cron_trigger(self.log_cleanup_cron),
            id=LOG_CLEANUP_JOB_ID,
            name='Log cleanup',
            replace_existing=True,
            max_instances=1,
        )

    def start(self) -> None:
        logger.info('Starting scheduler...')
        self.register_jobs()
        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info('Scheduler stopped')

    def _on_job_executed(self, event) -> None:
        if event.exception:
            logger.error(f"Scheduled job {event.job_id} failed: {event.exception}")
        else:
            logger.info(f"Scheduled job {event.job_id} finished: {event.retval}")
