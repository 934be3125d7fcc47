"""Performance analytics API."""

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from finrecorder.database import get_session
from finrecorder.engine.portfolio import get_analytics
from finrecorder.models.user import User
from finrecorder.api.deps import get_current_user

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("")
def analytics(
    days: int = Query(default=90, ge=1, le=3650),
    year: int | None = Query(default=None, ge=1990, le=2100),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return get_analytics(session, user.id, days=days, year=year)
