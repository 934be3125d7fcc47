"""Daily net-value snapshot computation. Pure; persistence lives in engine.snapshot_job."""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0")
CENT = Decimal("0.01")
RATE_PLACES = Decimal("0.0001")
RETURN_PLACES = Decimal("0.000001")


@dataclass(frozen=True)
class SnapshotValues:
    date: date
    tw_value: Decimal
    us_value: Decimal
    total_value: Decimal
    usd_to_twd_rate: Decimal
    daily_return: Decimal | None
    cumulative_return: Decimal | None


def _q(value: Decimal, places: Decimal) -> Decimal:
    return value.quantize(places, rounding=ROUND_HALF_UP)


def build_snapshot(
    day: date,
    tw_value: Decimal,
    us_value: Decimal,
    fx_rate: Decimal,
    prior_total: Decimal | None,
    first_total: Decimal | None,
) -> SnapshotValues | None:
    """Combine the day's market subtotals into a snapshot.

    ``prior_total`` is the latest snapshot value strictly before ``day`` and
    ``first_total`` the earliest; both are ``None`` when no earlier snapshot
    exists. Returns ``None`` for an empty or negative portfolio.
    """
    total = tw_value + us_value * fx_rate
    if total <= 0:
        return None

    daily_return = None
    cumulative_return = None
    if prior_total is not None:
        if prior_total > 0:
            daily_return = _q((total - prior_total) / prior_total, RETURN_PLACES)
        if first_total is not None and first_total > 0:
            cumulative_return = _q((total - first_total) / first_total, RETURN_PLACES)

    return SnapshotValues(
        date=day,
        tw_value=_q(tw_value, CENT),
        us_value=_q(us_value, CENT),
        total_value=_q(total, CENT),
        usd_to_twd_rate=_q(fx_rate, RATE_PLACES),
        daily_return=daily_return,
        cumulative_return=cumulative_return,
    )
