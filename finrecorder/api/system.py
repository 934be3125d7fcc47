"""System API — health check, scheduler status, job logs."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlmodel import Session, select

from finrecorder.database import get_session
from finrecorder.models.job_log import JobLog
from finrecorder.api.deps import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check(session: Session = Depends(get_session)):
    try:
        session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "database": "unreachable"})
    return {"status": "ok", "database": "ok"}


@router.get("/scheduler", dependencies=[Depends(get_current_user)])
def scheduler_status():
    """Current scheduler state with job details."""
    from finrecorder.engine.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.get("/logs", dependencies=[Depends(get_current_user)])
def job_logs(
    job: str | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(JobLog).order_by(JobLog.timestamp.desc(), JobLog.id.desc())
    if job is not None:
        stmt = stmt.where(JobLog.job == job)
    if status is not None:
        stmt = stmt.where(JobLog.status == status)
    stmt = stmt.offset(offset).limit(limit)
    return session.exec(stmt).all()
