"""Broker fee, transaction tax and cash-amount rules for a single trade."""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from finrecorder.config import settings

ZERO = Decimal("0")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class FeeSchedule:
    tw_broker_fee_rate: Decimal
    tw_min_broker_fee: Decimal
    tw_tax_rate: Decimal
    tw_etf_tax_rate: Decimal
    us_broker_fee: Decimal

    @classmethod
    def from_settings(cls, preference=None) -> "FeeSchedule":
        """Build the schedule from global settings, overridden by a UserPreference row."""
        schedule = cls(
            tw_broker_fee_rate=Decimal(str(settings.tw_broker_fee_rate)),
            tw_min_broker_fee=Decimal(settings.tw_min_broker_fee),
            tw_tax_rate=Decimal(str(settings.tw_tax_rate)),
            tw_etf_tax_rate=Decimal(str(settings.tw_etf_tax_rate)),
            us_broker_fee=Decimal(str(settings.us_broker_fee)),
        )
        if preference is None:
            return schedule
        return cls(
            tw_broker_fee_rate=Decimal(preference.tw_broker_fee_rate),
            tw_min_broker_fee=schedule.tw_min_broker_fee,
            tw_tax_rate=Decimal(preference.tw_tax_rate),
            tw_etf_tax_rate=schedule.tw_etf_tax_rate,
            us_broker_fee=Decimal(preference.us_broker_fee),
        )


@dataclass(frozen=True)
class TradeAmounts:
    gross: Decimal
    broker_fee: Decimal
    tax: Decimal
    other_fees: Decimal
    total_amount: Decimal


def is_tw_etf(symbol: str) -> bool:
    """TWSE ETF codes start with "00" (0050, 00878, 00965...)."""
    return symbol.startswith("00")


def _round_whole(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def compute_fees(
    market: str,
    side: str,
    symbol: str,
    gross: Decimal,
    schedule: FeeSchedule,
    broker_fee: Decimal | None = None,
    tax: Decimal | None = None,
) -> tuple[Decimal, Decimal]:
    """Return (broker_fee, tax), filling in whichever was not supplied.

    A supplied value, zero included, is always kept.
    """
    if market == "TW":
        if broker_fee is None:
            broker_fee = max(_round_whole(gross * schedule.tw_broker_fee_rate), schedule.tw_min_broker_fee)
        if tax is None:
            if side == "SELL":
                rate = schedule.tw_etf_tax_rate if is_tw_etf(symbol) else schedule.tw_tax_rate
                tax = _round_whole(gross * rate)
            else:
                tax = ZERO
    else:
        if broker_fee is None:
            broker_fee = schedule.us_broker_fee
        if tax is None:
            tax = ZERO
    return broker_fee, tax


def compute_trade_amounts(
    market: str,
    side: str,
    symbol: str,
    quantity: int,
    price: Decimal,
    schedule: FeeSchedule,
    broker_fee: Decimal | None = None,
    tax: Decimal | None = None,
    other_fees: Decimal | None = None,
) -> TradeAmounts:
    """Gross, fees and signed cash total of a trade.

    BUY total is what leaves the account (gross plus costs); SELL total is
    what arrives (gross minus costs).
    """
    gross = quantity * price
    broker_fee, tax = compute_fees(market, side, symbol, gross, schedule, broker_fee, tax)
    other_fees = other_fees if other_fees is not None else ZERO
    costs = broker_fee + tax + other_fees
    total = gross + costs if side == "BUY" else gross - costs
    return TradeAmounts(
        gross=gross,
        broker_fee=broker_fee.quantize(CENT),
        tax=tax.quantize(CENT),
        other_fees=other_fees.quantize(CENT),
        total_amount=total.quantize(CENT, rounding=ROUND_HALF_UP),
    )
