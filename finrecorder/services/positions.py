"""Stateless position accounting for the trade ledger.

Holdings are immutable ``HoldingState`` values; every function maps an input
holding (or ``None`` for "no position") to an output holding. No I/O and no
database access, so the edit flow can compose ``reverse_trade`` then
``apply_trade`` inside a single store transaction.

Average cost is weighted and fee-inclusive. Only buys move it; a sell
shrinks total cost proportionally and leaves the average untouched.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

ZERO = Decimal("0")
# stored precision of a holding row
AVG_PLACES = Decimal("0.0001")
CENT = Decimal("0.01")
BUY = "BUY"
SELL = "SELL"


@dataclass(frozen=True)
class HoldingState:
    quantity: int
    average_cost: Decimal
    total_cost: Decimal


def _check_side(side: str) -> None:
    if side not in (BUY, SELL):
        raise ValueError(f"Unknown trade side: {side!r}")


def apply_trade(
    holding: HoldingState | None,
    side: str,
    quantity: int,
    cost_per_share: Decimal,
) -> HoldingState | None:
    """Apply one trade to a holding and return the new state.

    For a BUY, ``cost_per_share`` must be the fully-loaded cost
    (total amount including fees and tax divided by quantity). It is not
    used for a SELL. Returns ``None`` when the position is closed.
    """
    _check_side(side)
    if side == BUY:
        if holding is None:
            total = quantity * cost_per_share
            return HoldingState(quantity, total / quantity, total)
        new_qty = holding.quantity + quantity
        new_total = holding.total_cost + quantity * cost_per_share
        return HoldingState(new_qty, new_total / new_qty, new_total)

    # SELL against nothing leaves nothing; over-sells close the position
    if holding is None:
        return None
    new_qty = holding.quantity - quantity
    if new_qty <= 0:
        return None
    return HoldingState(new_qty, holding.average_cost, new_qty * holding.average_cost)


def reverse_trade(
    holding: HoldingState | None,
    side: str,
    quantity: int,
    cost_per_share: Decimal,
) -> HoldingState | None:
    """Undo the effect of a previously applied trade.

    Reversing a BUY removes its shares and their cost, clamping total cost at
    zero. Reversing a SELL puts the shares back at the holding's average cost;
    ``cost_per_share`` only seeds a new holding when the sell had closed it.
    """
    _check_side(side)
    if side == BUY:
        if holding is None:
            return None
        new_qty = holding.quantity - quantity
        if new_qty <= 0:
            return None
        new_total = max(ZERO, holding.total_cost - quantity * cost_per_share)
        return HoldingState(new_qty, new_total / new_qty, new_total)

    if holding is None:
        total = quantity * cost_per_share
        return HoldingState(quantity, total / quantity, total)
    new_qty = holding.quantity + quantity
    new_total = holding.total_cost + quantity * holding.average_cost
    return HoldingState(new_qty, new_total / new_qty, new_total)


def trade_cost_per_share(side: str, quantity: int, price: Decimal, total_amount: Decimal) -> Decimal:
    """Cost basis per share a trade contributes to its holding.

    Buys carry their fees into the basis; a sell's basis is its quoted price,
    which only matters when reversing a sell that had closed the position.
    """
    if side == BUY:
        return total_amount / quantity
    return price


def round_state(state: HoldingState | None) -> HoldingState | None:
    """Round a state to the precision a holding row stores.

    Incremental updates start from the stored row, so replays must round
    after every step too or the two paths drift apart.
    """
    if state is None:
        return None
    return HoldingState(state.quantity, state.average_cost.quantize(AVG_PLACES), state.total_cost.quantize(CENT))


def recompute_from_history(trades: Iterable) -> dict[int, HoldingState]:
    """Fold an ordered trade sequence into holdings keyed by instrument_id.

    ``trades`` must already be ordered by trade date then creation order.
    Each item needs ``instrument_id``, ``side``, ``quantity``, ``price`` and
    ``total_amount`` attributes. Closed positions are absent from the result.
    """
    holdings: dict[int, HoldingState] = {}
    for trade in trades:
        cost = trade_cost_per_share(trade.side, trade.quantity, trade.price, trade.total_amount)
        state = round_state(apply_trade(holdings.get(trade.instrument_id), trade.side, trade.quantity, cost))
        if state is None:
            holdings.pop(trade.instrument_id, None)
        else:
            holdings[trade.instrument_id] = state
    return holdings
