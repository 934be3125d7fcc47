"""Trade ledger mutations and holding maintenance.

Each mutation runs in one session transaction: the trade row and the
affected holding row (read ``FOR UPDATE``) are written together, then the
day's net-value snapshot is refreshed on a best-effort basis.
"""

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func
from sqlmodel import Session, select

from finrecorder.errors import NotFoundError
from finrecorder.models.holding import Holding
from finrecorder.models.instrument import Instrument
from finrecorder.models.preference import UserPreference
from finrecorder.models.trade import Trade
from finrecorder.schemas.trade import TradeCreate, TradeRead, TradeUpdate
from finrecorder.services.fees import FeeSchedule, compute_trade_amounts
from finrecorder.services.gateway import PriceGateway
from finrecorder.services.positions import (
    HoldingState,
    apply_trade,
    recompute_from_history,
    reverse_trade,
    round_state,
    trade_cost_per_share,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_fee_schedule(session: Session, user_id: int) -> FeeSchedule:
    preference = session.exec(select(UserPreference).where(UserPreference.user_id == user_id)).first()
    return FeeSchedule.from_settings(preference)


def get_or_create_instrument(session: Session, symbol: str, market: str, name: str | None = None) -> Instrument:
    symbol = symbol.strip().upper()
    instrument = session.exec(
        select(Instrument).where(Instrument.symbol == symbol, Instrument.market == market)
    ).first()
    if instrument is None:
        instrument = Instrument(
            symbol=symbol,
            market=market,
            name=name,
            name_tw=name if market == "TW" else None,
        )
        session.add(instrument)
        session.flush()
        logger.info(f"Created instrument {market}:{symbol}")
    elif name and not instrument.name:
        instrument.name = name
        session.add(instrument)
    return instrument


def get_user_trade(session: Session, user_id: int, trade_id: int) -> Trade:
    trade = session.exec(select(Trade).where(Trade.id == trade_id, Trade.user_id == user_id)).first()
    if trade is None:
        raise NotFoundError("Trade", trade_id)
    return trade


def to_trade_read(trade: Trade, instrument: Instrument) -> TradeRead:
    return TradeRead(
        id=trade.id,
        instrument_id=trade.instrument_id,
        symbol=instrument.symbol,
        market=instrument.market,
        name=instrument.display_name,
        side=trade.side,
        quantity=trade.quantity,
        price=trade.price,
        currency=trade.currency,
        trade_date=trade.trade_date,
        broker_fee=trade.broker_fee,
        tax=trade.tax,
        other_fees=trade.other_fees,
        total_amount=trade.total_amount,
        notes=trade.notes,
        created_at=trade.created_at,
        updated_at=trade.updated_at,
    )


def list_trades(
    session: Session,
    user_id: int,
    page: int = 1,
    limit: int = 20,
    market: str | None = None,
) -> dict:
    """One page of trades, newest first."""
    base = select(Trade, Instrument).join(Instrument, Trade.instrument_id == Instrument.id).where(Trade.user_id == user_id)
    count_stmt = select(func.count(Trade.id)).join(Instrument, Trade.instrument_id == Instrument.id).where(
        Trade.user_id == user_id
    )
    if market is not None:
        base = base.where(Instrument.market == market)
        count_stmt = count_stmt.where(Instrument.market == market)

    total = session.exec(count_stmt).one()
    rows = session.exec(
        base.order_by(Trade.trade_date.desc(), Trade.created_at.desc(), Trade.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return {
        "items": [to_trade_read(trade, instrument) for trade, instrument in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }


# ---------------------------------------------------------------------------
# Holding persistence
# ---------------------------------------------------------------------------

def _lock_holding(session: Session, user_id: int, instrument_id: int) -> Holding | None:
    return session.exec(
        select(Holding)
        .where(Holding.user_id == user_id, Holding.instrument_id == instrument_id)
        .with_for_update()
    ).first()


def _state_of(row: Holding | None) -> HoldingState | None:
    if row is None:
        return None
    return HoldingState(row.quantity, row.average_cost, row.total_cost)


def _store_state(
    session: Session,
    user_id: int,
    instrument: Instrument,
    row: Holding | None,
    state: HoldingState | None,
) -> None:
    """Write ``state`` over ``row``; a closed position deletes the row."""
    if state is None:
        if row is not None:
            session.delete(row)
        return
    if row is None:
        row = Holding(user_id=user_id, instrument_id=instrument.id, currency=instrument.currency, quantity=0,
                      average_cost=Decimal("0"), total_cost=Decimal("0"))
    state = round_state(state)
    row.quantity = state.quantity
    row.average_cost = state.average_cost
    row.total_cost = state.total_cost
    row.updated_at = datetime.now(timezone.utc)
    session.add(row)


def _refresh_snapshot(session: Session, user_id: int, gateway: PriceGateway | None = None) -> None:
    """Re-snapshot today's net value after a mutation. Failures are logged only."""
    from finrecorder.engine.snapshot_job import snapshot_user

    try:
        snapshot_user(session, user_id, gateway=gateway)
    except Exception as e:
        session.rollback()
        logger.warning(f"Snapshot refresh failed for user {user_id}: {e}", exc_info=True)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def record_trade(
    session: Session,
    user_id: int,
    data: TradeCreate,
    gateway: PriceGateway | None = None,
    refresh_snapshot: bool = True,
) -> Trade:
    """Store a new trade and fold it into the user's holding."""
    try:
        instrument = get_or_create_instrument(session, data.symbol, data.market, data.name)
        amounts = compute_trade_amounts(
            instrument.market,
            data.side,
            instrument.symbol,
            data.quantity,
            data.price,
            get_fee_schedule(session, user_id),
            broker_fee=data.broker_fee,
            tax=data.tax,
            other_fees=data.other_fees,
        )
        trade = Trade(
            user_id=user_id,
            instrument_id=instrument.id,
            side=data.side,
            quantity=data.quantity,
            price=data.price,
            currency=instrument.currency,
            trade_date=data.trade_date,
            broker_fee=amounts.broker_fee,
            tax=amounts.tax,
            other_fees=amounts.other_fees,
            total_amount=amounts.total_amount,
            notes=data.notes,
        )
        session.add(trade)

        row = _lock_holding(session, user_id, instrument.id)
        cost = trade_cost_per_share(trade.side, trade.quantity, trade.price, trade.total_amount)
        state = apply_trade(_state_of(row), trade.side, trade.quantity, cost)
        _store_state(session, user_id, instrument, row, state)

        session.commit()
        session.refresh(trade)
    except Exception:
        session.rollback()
        raise

    logger.info(
        f"User {user_id} recorded {trade.side} {trade.quantity} {instrument.market}:{instrument.symbol} "
        f"@ {trade.price} (total {trade.total_amount})"
    )
    if refresh_snapshot:
        _refresh_snapshot(session, user_id, gateway)
    return trade


def edit_trade(
    session: Session,
    user_id: int,
    trade_id: int,
    patch: TradeUpdate,
    gateway: PriceGateway | None = None,
) -> Trade:
    """Replace a trade's effect on its holding: reverse the old, apply the new.

    Fees left out of the patch are recomputed when side, quantity or price
    change, otherwise the stored values are kept.
    """
    try:
        trade = get_user_trade(session, user_id, trade_id)
        instrument = session.get(Instrument, trade.instrument_id)
        if instrument is None:
            raise NotFoundError("Instrument", trade.instrument_id)

        row = _lock_holding(session, user_id, instrument.id)
        old_cost = trade_cost_per_share(trade.side, trade.quantity, trade.price, trade.total_amount)
        state = reverse_trade(_state_of(row), trade.side, trade.quantity, old_cost)

        changes = patch.model_dump(exclude_unset=True)
        side = changes.get("side") or trade.side
        quantity = changes.get("quantity") or trade.quantity
        price = changes.get("price") or trade.price
        repriced = (side, quantity, price) != (trade.side, trade.quantity, trade.price)

        def fee(field: str) -> Decimal | None:
            if changes.get(field) is not None:
                return changes[field]
            return None if repriced else getattr(trade, field)

        amounts = compute_trade_amounts(
            instrument.market,
            side,
            instrument.symbol,
            quantity,
            price,
            get_fee_schedule(session, user_id),
            broker_fee=fee("broker_fee"),
            tax=fee("tax"),
            other_fees=changes.get("other_fees") if changes.get("other_fees") is not None else trade.other_fees,
        )

        trade.side = side
        trade.quantity = quantity
        trade.price = price
        trade.trade_date = changes.get("trade_date") or trade.trade_date
        if "notes" in changes:
            trade.notes = changes["notes"]
        trade.broker_fee = amounts.broker_fee
        trade.tax = amounts.tax
        trade.other_fees = amounts.other_fees
        trade.total_amount = amounts.total_amount
        trade.updated_at = datetime.now(timezone.utc)
        session.add(trade)

        new_cost = trade_cost_per_share(side, quantity, price, amounts.total_amount)
        state = apply_trade(state, side, quantity, new_cost)
        _store_state(session, user_id, instrument, row, state)

        session.commit()
        session.refresh(trade)
    except Exception:
        session.rollback()
        raise

    logger.info(f"User {user_id} edited trade {trade_id}")
    _refresh_snapshot(session, user_id, gateway)
    return trade


def delete_trade(session: Session, user_id: int, trade_id: int, gateway: PriceGateway | None = None) -> None:
    """Remove a trade and reverse its effect on the holding."""
    try:
        trade = get_user_trade(session, user_id, trade_id)
        instrument = session.get(Instrument, trade.instrument_id)
        if instrument is None:
            raise NotFoundError("Instrument", trade.instrument_id)

        row = _lock_holding(session, user_id, instrument.id)
        cost = trade_cost_per_share(trade.side, trade.quantity, trade.price, trade.total_amount)
        state = reverse_trade(_state_of(row), trade.side, trade.quantity, cost)
        _store_state(session, user_id, instrument, row, state)

        session.delete(trade)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"User {user_id} deleted trade {trade_id}")
    _refresh_snapshot(session, user_id, gateway)


def recompute_holdings_from_history(session: Session, user_id: int) -> dict:
    """Rebuild every holding of a user by replaying the full trade log."""
    try:
        trades = session.exec(
            select(Trade)
            .where(Trade.user_id == user_id)
            .order_by(Trade.trade_date, Trade.created_at, Trade.id)
        ).all()
        states = recompute_from_history(trades)

        existing = {
            row.instrument_id: row
            for row in session.exec(select(Holding).where(Holding.user_id == user_id).with_for_update()).all()
        }
        for instrument_id, row in existing.items():
            if instrument_id not in states:
                session.delete(row)
        for instrument_id, state in states.items():
            instrument = session.get(Instrument, instrument_id)
            _store_state(session, user_id, instrument, existing.get(instrument_id), state)

        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"Recomputed {len(states)} holdings for user {user_id} from {len(trades)} trades")
    return {"trades": len(trades), "holdings": len(states)}
