"""Holdings maintenance API."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from finrecorder.database import get_session
from finrecorder.engine.ledger import recompute_holdings_from_history
from finrecorder.models.user import User
from finrecorder.api.deps import get_current_user

router = APIRouter(prefix="/api/holdings", tags=["holdings"])


@router.post("/recalculate")
def recalculate(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    """Rebuild the user's holdings from the full trade history."""
    result = recompute_holdings_from_history(session, user.id)
    return {"success": True, **result}
