"""APScheduler integration for FastAPI.

Runs the market data refresh and daily snapshot jobs on cron schedules and
records every run in the bounded ``job_log`` table.
"""

import asyncio
import json
import logging
import time
from dataclasses import asdict, is_dataclass

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import delete
from sqlmodel import Session, select

from finrecorder.config import settings
from finrecorder.database import engine as default_engine
from finrecorder.models.job_log import JobLog
from finrecorder.utils.constants import JOB_SCHEDULES

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone=settings.timezone)


def _job_functions() -> dict:
    from finrecorder.engine.market_jobs import update_exchange_rate, update_prices
    from finrecorder.engine.snapshot_job import run_daily_snapshot_for_all_users

    return {
        "update_tw_prices": lambda db_engine: update_prices("TW", db_engine=db_engine),
        "update_us_prices": lambda db_engine: update_prices("US", db_engine=db_engine),
        "update_rates": lambda db_engine: update_exchange_rate(db_engine=db_engine),
        "snapshot_values": lambda db_engine: run_daily_snapshot_for_all_users(db_engine=db_engine),
    }


def _to_details(result) -> dict:
    if is_dataclass(result):
        result = asdict(result)
    # Round-trip so dates and Decimals fit a JSON column
    return json.loads(json.dumps(result, default=str))


def record_job_log(session: Session, job: str, status: str, message: str, duration_ms: int, details=None) -> JobLog:
    """Write a JobLog row, then prune the table to the newest ``job_log_retention`` rows."""
    log = JobLog(job=job, status=status, message=message, duration_ms=duration_ms, details=details)
    session.add(log)
    session.commit()

    keep = select(JobLog.id).order_by(JobLog.timestamp.desc(), JobLog.id.desc()).limit(settings.job_log_retention)
    keep_ids = list(session.exec(keep).all())
    session.execute(delete(JobLog).where(JobLog.id.not_in(keep_ids)))
    session.commit()
    session.refresh(log)
    return log


def execute_job(name: str, db_engine=None) -> dict:
    """Run one job synchronously and log the outcome; job failures are recorded, not raised."""
    db_engine = db_engine or default_engine
    jobs = _job_functions()
    if name not in jobs:
        raise KeyError(f"Unknown job: {name}")

    started = time.monotonic()
    try:
        details = _to_details(jobs[name](db_engine))
        status = "success" if details.get("success", True) else "error"
        message = "; ".join(details.get("errors") or []) or details.get("error") or "ok"
    except Exception as e:
        logger.error(f"Job {name} failed: {e}", exc_info=True)
        details = {"success": False, "error": str(e)}
        status = "error"
        message = str(e)
    duration_ms = int((time.monotonic() - started) * 1000)

    with Session(db_engine) as session:
        record_job_log(session, name, status, message[:500], duration_ms, details)
    logger.info(f"Job {name} finished with {status} in {duration_ms}ms")
    return details


async def run_job(name: str) -> dict:
    return await asyncio.to_thread(execute_job, name)


def start_scheduler():
    """Register every cron job and start the scheduler."""
    for name, schedules in JOB_SCHEDULES.items():
        for index, cron in enumerate(schedules):
            scheduler.add_job(
                run_job,
                trigger=CronTrigger(timezone=settings.timezone, **cron),
                args=[name],
                id=f"{name}_{index}",
                name=name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=300,
            )

    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "enabled": settings.scheduler_enabled,
        "timezone": settings.timezone,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if j.next_run_time else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }
