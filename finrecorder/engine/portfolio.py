"""Read side: current portfolio valuation and performance analytics."""

import logging
import math
from dataclasses import asdict
from datetime import date, timedelta

from sqlmodel import Session, select

from finrecorder.engine.snapshot_job import holding_lines
from finrecorder.models.daily_snapshot import DailySnapshot
from finrecorder.services.analytics import (
    AllocationInput,
    NetValuePoint,
    available_years,
    compute_allocation,
    compute_performance_metrics,
    filter_year,
)
from finrecorder.services.gateway import PriceGateway, StoreGateway
from finrecorder.services.quotes import local_today
from finrecorder.services.valuation import PortfolioValuation, value_portfolio

logger = logging.getLogger(__name__)


def get_portfolio_valuation(session: Session, user_id: int, gateway: PriceGateway | None = None) -> PortfolioValuation:
    gateway = gateway or StoreGateway(session)
    rate = gateway.latest_rate("USD", "TWD")
    valuation = value_portfolio(holding_lines(session, user_id), gateway.latest_close, rate)
    if valuation.degraded:
        missing = [h.symbol for h in valuation.holdings if h.price_is_fallback]
        logger.warning(f"No stored price for {', '.join(missing)}; valued at average cost")
    return valuation


def load_net_value_points(session: Session, user_id: int, since: date | None = None) -> list[NetValuePoint]:
    stmt = select(DailySnapshot).where(DailySnapshot.user_id == user_id)
    if since is not None:
        stmt = stmt.where(DailySnapshot.date >= since)
    rows = session.exec(stmt.order_by(DailySnapshot.date)).all()
    return [
        NetValuePoint(
            date=row.date,
            value=float(row.total_value),
            daily_return=float(row.daily_return) if row.daily_return is not None else None,
        )
        for row in rows
    ]


def _finite_or_none(metrics: dict) -> dict:
    # Replace inf/nan with None so JSON serialization doesn't blow up.
    for key, value in metrics.items():
        if isinstance(value, float) and (math.isinf(value) or math.isnan(value)):
            metrics[key] = None
    return metrics


def _history_entry(point: NetValuePoint) -> dict:
    return {
        "date": point.date,
        "value": point.value,
        "daily_return": point.daily_return * 100 if point.daily_return is not None else None,
    }


def get_analytics(
    session: Session,
    user_id: int,
    days: int = 90,
    year: int | None = None,
    gateway: PriceGateway | None = None,
    as_of: date | None = None,
) -> dict:
    """Metrics, allocation, chart history and summary for one user.

    With ``year`` set, metrics and history cover that calendar year;
    otherwise metrics cover the full history and the chart the last ``days``.
    """
    as_of = as_of or local_today()
    all_points = load_net_value_points(session, user_id)
    points = filter_year(all_points, year)
    metrics = compute_performance_metrics(points, as_of=as_of)

    if year is None:
        cutoff = as_of - timedelta(days=days)
        history = [p for p in all_points if p.date >= cutoff]
    else:
        history = points

    valuation = get_portfolio_valuation(session, user_id, gateway)
    rate = float(valuation.usd_to_twd_rate)
    allocation = compute_allocation(
        (
            AllocationInput(symbol=h.symbol, name=h.name, market=h.market, value=float(h.market_value))
            for h in valuation.holdings
        ),
        rate,
    )

    return {
        "metrics": _finite_or_none(asdict(metrics)),
        "allocation": [asdict(s) for s in allocation],
        "net_value_history": [_history_entry(p) for p in history],
        "summary": {
            "total_value": float(valuation.total_value_twd),
            "total_cost": float(valuation.total_cost_twd),
            "total_pnl": float(valuation.total_unrealized_pnl),
            "total_pnl_percent": float(valuation.total_unrealized_pnl_percent),
        },
        "available_years": available_years(p.date for p in all_points),
        "selected_year": year,
        "degraded": valuation.degraded,
    }
