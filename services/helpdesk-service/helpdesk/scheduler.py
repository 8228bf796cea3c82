import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR
from helpdesk.core.config import settings
from helpdesk.core.db import SessionLocal
from helpdesk.services.automation import AutomationScheduler
from helpdesk.services.sessions import SessionTracker
from helpdesk.services.storage import resolve_blob_store

logger = structlog.get_logger()

SWEEP_JOB_ID = "automation_sweep"
CLEANUP_JOB_ID = "session_cleanup"


def job_listener(event):
    if event.exception:
        logger.error("scheduler_job_failed", job_id=event.job_id, error=str(event.exception))
    else:
        logger.debug("scheduler_job_executed", job_id=event.job_id)


def run_automation_sweep():
    """
    One sweep in a fresh session. Called by APScheduler.
    """
    with SessionLocal() as db:
        report = AutomationScheduler(db, blob_store=resolve_blob_store()).run_sweep()
    return report


def run_session_cleanup():
    with SessionLocal() as db:
        closed = SessionTracker(db).cleanup_old()
    return closed


def build_scheduler() -> BackgroundScheduler:
    scheduler = BackgroundScheduler(
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 300,
        }
    )
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    scheduler.add_job(
        run_automation_sweep,
        trigger=IntervalTrigger(seconds=settings.AUTOMATION_SWEEP_INTERVAL_SECONDS),
        id=SWEEP_JOB_ID,
        name="Ticket automation sweep",
        replace_existing=True,
    )
    scheduler.add_job(
        run_session_cleanup,
        trigger=IntervalTrigger(seconds=settings.SESSION_CLEANUP_INTERVAL_SECONDS),
        id=CLEANUP_JOB_ID,
        name="Stale agent session cleanup",
        replace_existing=True,
    )
    logger.info(
        "scheduler_configured",
        sweep_interval=settings.AUTOMATION_SWEEP_INTERVAL_SECONDS,
        cleanup_interval=settings.SESSION_CLEANUP_INTERVAL_SECONDS,
    )
    return scheduler
