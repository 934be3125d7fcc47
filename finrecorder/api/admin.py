"""Admin API — snapshot backfill and price history import."""

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from finrecorder.database import get_session
from finrecorder.engine.market_jobs import import_price_history
from finrecorder.engine.snapshot_job import backfill_snapshots
from finrecorder.models.instrument import Instrument
from finrecorder.models.trade import Trade
from finrecorder.models.user import User
from finrecorder.services.quotes import local_today
from finrecorder.api.deps import get_current_user

router = APIRouter(prefix="/api/admin", tags=["admin"])


class BackfillRequest(BaseModel):
    year: int = Field(ge=1990, le=2100)
    import_prices: bool = False


@router.post("/backfill-snapshots")
def backfill(
    body: BackfillRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Rebuild the user's snapshots for one year, optionally importing closes first."""
    imported = 0
    if body.import_prices:
        instrument_ids = session.exec(select(Trade.instrument_id).where(Trade.user_id == user.id).distinct()).all()
        start, end = date(body.year, 1, 1), min(date(body.year, 12, 31), local_today())
        for instrument_id in instrument_ids:
            instrument = session.get(Instrument, instrument_id)
            imported += import_price_history(session, instrument, start, end)

    result = backfill_snapshots(session, user.id, body.year)
    return {"success": True, "prices_imported": imported, **result}
