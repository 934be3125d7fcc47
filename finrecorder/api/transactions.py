"""Trade ledger API."""

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from finrecorder.database import get_session
from finrecorder.engine import ledger
from finrecorder.models.instrument import Instrument
from finrecorder.models.user import User
from finrecorder.schemas.trade import TradeCreate, TradePage, TradeRead, TradeUpdate
from finrecorder.api.deps import get_current_user

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


def _read(session: Session, trade) -> TradeRead:
    return ledger.to_trade_read(trade, session.get(Instrument, trade.instrument_id))


@router.get("", response_model=TradePage)
def list_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    market: str | None = Query(default=None, pattern="^(TW|US)$"),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return ledger.list_trades(session, user.id, page=page, limit=limit, market=market)


@router.post("", response_model=TradeRead, status_code=201)
def create_transaction(
    data: TradeCreate,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    trade = ledger.record_trade(session, user.id, data)
    return _read(session, trade)


@router.get("/{trade_id}", response_model=TradeRead)
def get_transaction(
    trade_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _read(session, ledger.get_user_trade(session, user.id, trade_id))


@router.put("/{trade_id}", response_model=TradeRead)
def update_transaction(
    trade_id: int,
    data: TradeUpdate,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    trade = ledger.edit_trade(session, user.id, trade_id, data)
    return _read(session, trade)


@router.delete("/{trade_id}", status_code=204)
def delete_transaction(
    trade_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    ledger.delete_trade(session, user.id, trade_id)
