"""Stateless portfolio valuation.

Prices and the FX rate are handed in by the caller; nothing here touches the
database or the network. TW lines are valued in TWD, US lines in USD, and the
portfolio totals are normalized to TWD.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from decimal import Decimal

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass
class HoldingLine:
    """A holding row joined with its instrument."""
    instrument_id: int
    symbol: str
    name: str
    market: str
    quantity: int
    average_cost: Decimal
    total_cost: Decimal
    currency: str


@dataclass
class HoldingValuation:
    instrument_id: int
    symbol: str
    name: str
    market: str
    currency: str
    quantity: int
    average_cost: Decimal
    total_cost: Decimal
    current_price: Decimal
    market_value: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_percent: Decimal
    price_is_fallback: bool = False


@dataclass
class PortfolioValuation:
    tw_value: Decimal = ZERO  # TWD
    us_value: Decimal = ZERO  # USD
    total_value_twd: Decimal = ZERO
    total_cost_twd: Decimal = ZERO
    total_unrealized_pnl: Decimal = ZERO
    total_unrealized_pnl_percent: Decimal = ZERO
    usd_to_twd_rate: Decimal = ZERO
    degraded: bool = False
    holdings: list[HoldingValuation] = field(default_factory=list)


def pnl_percent(pnl: Decimal, cost: Decimal) -> Decimal:
    if cost > 0:
        return pnl / cost * HUNDRED
    return ZERO


def value_holding(line: HoldingLine, price: Decimal | None) -> HoldingValuation:
    """Value one holding; a missing price falls back to its average cost."""
    fallback = price is None
    current = line.average_cost if fallback else price
    market_value = line.quantity * current
    pnl = market_value - line.total_cost
    return HoldingValuation(
        instrument_id=line.instrument_id,
        symbol=line.symbol,
        name=line.name,
        market=line.market,
        currency=line.currency,
        quantity=line.quantity,
        average_cost=line.average_cost,
        total_cost=line.total_cost,
        current_price=current,
        market_value=market_value,
        unrealized_pnl=pnl,
        unrealized_pnl_percent=pnl_percent(pnl, line.total_cost),
        price_is_fallback=fallback,
    )


def value_portfolio(
    lines: Iterable[HoldingLine],
    price_lookup: Callable[[int], Decimal | None],
    usd_to_twd_rate: Decimal,
) -> PortfolioValuation:
    """Value every open holding and aggregate to TWD.

    ``price_lookup`` maps an instrument id to its latest close or ``None``.
    Lines with a non-positive quantity are skipped.
    """
    result = PortfolioValuation(usd_to_twd_rate=usd_to_twd_rate)
    tw_cost = ZERO
    us_cost = ZERO

    for line in lines:
        if line.quantity <= 0:
            continue
        valuation = value_holding(line, price_lookup(line.instrument_id))
        result.holdings.append(valuation)
        if line.market == "TW":
            result.tw_value += valuation.market_value
            tw_cost += line.total_cost
        else:
            result.us_value += valuation.market_value
            us_cost += line.total_cost

    result.total_value_twd = result.tw_value + result.us_value * usd_to_twd_rate
    result.total_cost_twd = tw_cost + us_cost * usd_to_twd_rate
    result.total_unrealized_pnl = result.total_value_twd - result.total_cost_twd
    result.total_unrealized_pnl_percent = pnl_percent(result.total_unrealized_pnl, result.total_cost_twd)
    result.degraded = any(h.price_is_fallback for h in result.holdings)
    return result
