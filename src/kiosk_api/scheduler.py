"""
Daily schedule for the auto-exit sweep.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .audit import DatabaseAuditSink
from .auto_exit import sweep_open_visits
from .errors import AutoExitUpdateFailure

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "auto_exit_sweep"


def run_sweep_job(session_factory, exit_hour):
    db = session_factory()
    try:
        result = sweep_open_visits(db, exit_hour, audit_sink=DatabaseAuditSink(session_factory))
        logger.info("Scheduled auto-exit sweep processed %d visit(s)", result.count)
        return result
    except AutoExitUpdateFailure:
        # Already logged; open visits stay open until the next run.
        return None
    finally:
        db.close()


# PUBLIC_INTERFACE
def create_sweep_scheduler(settings, session_factory):
    """
    Builds (but does not start) a BackgroundScheduler running the sweep
    once a day at the configured local time.
    """
    scheduler = BackgroundScheduler(
        timezone=settings.facility_timezone,
        job_defaults={
            "coalesce": True,
            "misfire_grace_time": 3600,
        },
    )
    scheduler.add_job(
        run_sweep_job,
        CronTrigger(
            hour=settings.auto_exit_schedule_hour,
            minute=settings.auto_exit_schedule_minute,
            timezone=settings.facility_timezone,
        ),
        args=[session_factory, settings.sweep_exit_hour_utc],
        id=SWEEP_JOB_ID,
        replace_existing=True,
        max_instances=1,
    )
    return scheduler
