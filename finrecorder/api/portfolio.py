"""Portfolio valuation API."""

from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlmodel import Session

from finrecorder.database import get_session
from finrecorder.engine.portfolio import get_portfolio_valuation
from finrecorder.models.user import User
from finrecorder.api.deps import get_current_user

router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])


@router.get("")
def portfolio(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    """Holdings valued at the latest stored close, totals in TWD."""
    valuation = get_portfolio_valuation(session, user.id)
    return asdict(valuation)
