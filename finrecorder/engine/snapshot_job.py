"""Daily net-value snapshots: per user, batch over all users, and yearly backfill."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy import distinct
from sqlmodel import Session, select

from finrecorder.database import engine as default_engine
from finrecorder.models.daily_snapshot import DailySnapshot
from finrecorder.models.holding import Holding
from finrecorder.models.instrument import Instrument
from finrecorder.models.price import PriceObservation
from finrecorder.models.trade import Trade
from finrecorder.services.gateway import PriceGateway, StoreGateway, dialect_insert
from finrecorder.services.positions import HoldingState, apply_trade, round_state, trade_cost_per_share
from finrecorder.services.quotes import local_today
from finrecorder.services.snapshots import SnapshotValues, build_snapshot
from finrecorder.services.valuation import HoldingLine, value_portfolio

logger = logging.getLogger(__name__)


@dataclass
class UserSnapshotResult:
    user_id: int
    success: bool
    total_value: float | None = None
    error: str | None = None


@dataclass
class SnapshotBatchResult:
    success: bool
    users_processed: int
    results: list[UserSnapshotResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------

def holding_lines(session: Session, user_id: int) -> list[HoldingLine]:
    rows = session.exec(
        select(Holding, Instrument)
        .join(Instrument, Holding.instrument_id == Instrument.id)
        .where(Holding.user_id == user_id, Holding.quantity > 0)
        .order_by(Holding.id)
    ).all()
    return [
        HoldingLine(
            instrument_id=instrument.id,
            symbol=instrument.symbol,
            name=instrument.display_name,
            market=instrument.market,
            quantity=holding.quantity,
            average_cost=holding.average_cost,
            total_cost=holding.total_cost,
            currency=holding.currency,
        )
        for holding, instrument in rows
    ]


def _prior_totals(session: Session, user_id: int, day: date):
    """(latest, earliest) snapshot totals strictly before ``day``."""
    # Rows may have been rewritten by upsert_snapshot behind the identity map
    earlier = (
        select(DailySnapshot)
        .where(DailySnapshot.user_id == user_id, DailySnapshot.date < day)
        .execution_options(populate_existing=True)
    )
    prior = session.exec(earlier.order_by(DailySnapshot.date.desc())).first()
    if prior is None:
        return None, None
    first = session.exec(earlier.order_by(DailySnapshot.date)).first()
    return prior.total_value, first.total_value


def upsert_snapshot(session: Session, user_id: int, values: SnapshotValues) -> None:
    """Insert or overwrite the (user, date) snapshot in one statement."""
    row = {
        "tw_value": values.tw_value,
        "us_value": values.us_value,
        "total_value": values.total_value,
        "usd_to_twd_rate": values.usd_to_twd_rate,
        "daily_return": values.daily_return,
        "cumulative_return": values.cumulative_return,
    }
    stmt = dialect_insert(session, DailySnapshot.__table__).values(
        user_id=user_id,
        date=values.date,
        created_at=datetime.now(timezone.utc),
        **row,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "date"],
        set_={key: stmt.excluded[key] for key in row},
    )
    session.execute(stmt)


# ---------------------------------------------------------------------------
# Snapshot one user
# ---------------------------------------------------------------------------

def snapshot_user(
    session: Session,
    user_id: int,
    gateway: PriceGateway | None = None,
    day: date | None = None,
) -> SnapshotValues | None:
    """Value a user's holdings now and store them as the snapshot for ``day``.

    Returns ``None`` (and stores nothing) when the portfolio is empty.
    """
    gateway = gateway or StoreGateway(session)
    day = day or local_today()

    rate = gateway.latest_rate("USD", "TWD")
    valuation = value_portfolio(holding_lines(session, user_id), gateway.latest_close, rate)
    prior_total, first_total = _prior_totals(session, user_id, day)
    values = build_snapshot(day, valuation.tw_value, valuation.us_value, rate, prior_total, first_total)
    if values is None:
        logger.info(f"User {user_id} has no portfolio value on {day}, snapshot skipped")
        return None

    upsert_snapshot(session, user_id, values)
    session.commit()
    if valuation.degraded:
        logger.warning(f"Snapshot for user {user_id} on {day} used average cost for missing prices")
    return values


def run_daily_snapshot_for_all_users(
    db_engine=None,
    gateway_factory: Callable[[Session], object] | None = None,
    day: date | None = None,
) -> SnapshotBatchResult:
    """Snapshot every user holding at least one position.

    Each user runs in its own session so one failure cannot undo another
    user's snapshot.
    """
    db_engine = db_engine or default_engine
    gateway_factory = gateway_factory or StoreGateway
    day = day or local_today()

    with Session(db_engine) as session:
        user_ids = session.exec(select(distinct(Holding.user_id)).where(Holding.quantity > 0)).all()

    result = SnapshotBatchResult(success=True, users_processed=0)
    for user_id in user_ids:
        with Session(db_engine) as session:
            try:
                values = snapshot_user(session, user_id, gateway_factory(session), day)
                result.results.append(
                    UserSnapshotResult(
                        user_id=user_id,
                        success=True,
                        total_value=float(values.total_value) if values else None,
                    )
                )
            except Exception as e:
                session.rollback()
                logger.error(f"Snapshot failed for user {user_id}: {e}", exc_info=True)
                result.results.append(UserSnapshotResult(user_id=user_id, success=False, error=str(e)))
                result.errors.append(f"user {user_id}: {e}")
        result.users_processed += 1

    result.success = not result.errors
    logger.info(f"Daily snapshot for {day}: {result.users_processed} users, {len(result.errors)} errors")
    return result


# ---------------------------------------------------------------------------
# Backfill
# ---------------------------------------------------------------------------

def backfill_snapshots(
    session: Session,
    user_id: int,
    year: int,
    gateway: PriceGateway | None = None,
    through: date | None = None,
) -> dict:
    """Rebuild a year of snapshots from the trade log and stored closes.

    Trades are replayed day by day; each date that has a stored close for
    one of the user's instruments is valued with the close on or before that
    date (average cost when none) and the rate on or before that date.
    Snapshots are written in date order so returns chain day to day.
    """
    gateway = gateway or StoreGateway(session)
    start = date(year, 1, 1)
    end = min(date(year, 12, 31), through or local_today())

    trades = session.exec(
        select(Trade).where(Trade.user_id == user_id).order_by(Trade.trade_date, Trade.created_at, Trade.id)
    ).all()
    if not trades:
        return {"year": year, "days": 0, "snapshots": 0}

    instruments = {
        i.id: i
        for i in session.exec(select(Instrument).where(Instrument.id.in_({t.instrument_id for t in trades}))).all()
    }
    days = session.exec(
        select(distinct(PriceObservation.date))
        .where(
            PriceObservation.instrument_id.in_(list(instruments)),
            PriceObservation.date >= start,
            PriceObservation.date <= end,
        )
        .order_by(PriceObservation.date)
    ).all()

    states: dict[int, HoldingState] = {}
    pending = list(trades)
    written = 0
    for day in days:
        while pending and pending[0].trade_date <= day:
            trade = pending.pop(0)
            cost = trade_cost_per_share(trade.side, trade.quantity, trade.price, trade.total_amount)
            state = round_state(apply_trade(states.get(trade.instrument_id), trade.side, trade.quantity, cost))
            if state is None:
                states.pop(trade.instrument_id, None)
            else:
                states[trade.instrument_id] = state

        lines = [
            HoldingLine(
                instrument_id=instrument_id,
                symbol=instruments[instrument_id].symbol,
                name=instruments[instrument_id].display_name,
                market=instruments[instrument_id].market,
                quantity=state.quantity,
                average_cost=state.average_cost,
                total_cost=state.total_cost,
                currency=instruments[instrument_id].currency,
            )
            for instrument_id, state in states.items()
        ]
        rate = gateway.rate_on_date("USD", "TWD", day)
        valuation = value_portfolio(lines, lambda iid, d=day: gateway.close_on_date(iid, d), rate)
        prior_total, first_total = _prior_totals(session, user_id, day)
        values = build_snapshot(day, valuation.tw_value, valuation.us_value, rate, prior_total, first_total)
        if values is None:
            continue
        upsert_snapshot(session, user_id, values)
        session.flush()
        written += 1

    session.commit()
    logger.info(f"Backfilled {written} snapshots for user {user_id} in {year}")
    return {"year": year, "days": len(days), "snapshots": written}
