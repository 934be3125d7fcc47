"""Pydantic schemas for the transactions API."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from finrecorder.utils.constants import MARKETS, SIDES


def _one_of(value: str, allowed: list[str]) -> str:
    text = value.strip().upper()
    if text not in allowed:
        raise ValueError(f"must be one of: {', '.join(allowed)}")
    return text


class TradeCreate(BaseModel):
    symbol: str = Field(min_length=1, max_length=20)
    market: str
    side: str
    quantity: int = Field(gt=0)
    price: Decimal = Field(gt=0, max_digits=12, decimal_places=4)
    trade_date: date
    # None = compute from the fee schedule; 0 is kept as an explicit zero
    broker_fee: Decimal | None = Field(default=None, ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    other_fees: Decimal | None = Field(default=None, ge=0)
    name: str | None = Field(default=None, max_length=120)
    notes: str | None = None

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        text = value.strip().upper()
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("market")
    @classmethod
    def _validate_market(cls, value: str) -> str:
        return _one_of(value, MARKETS)

    @field_validator("side")
    @classmethod
    def _validate_side(cls, value: str) -> str:
        return _one_of(value, SIDES)


class TradeUpdate(BaseModel):
    """Partial edit of a trade. The instrument of a trade cannot change."""
    side: str | None = None
    quantity: int | None = Field(default=None, gt=0)
    price: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=4)
    trade_date: date | None = None
    broker_fee: Decimal | None = Field(default=None, ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    other_fees: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None

    @field_validator("side")
    @classmethod
    def _validate_optional_side(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _one_of(value, SIDES)


class TradeRead(BaseModel):
    id: int
    instrument_id: int
    symbol: str
    market: str
    name: str
    side: str
    quantity: int
    price: Decimal
    currency: str
    trade_date: date
    broker_fee: Decimal
    tax: Decimal
    other_fees: Decimal
    total_amount: Decimal
    notes: str | None
    created_at: datetime
    updated_at: datetime


class TradePage(BaseModel):
    items: list[TradeRead]
    total: int
    page: int
    limit: int
    pages: int
