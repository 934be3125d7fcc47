"""Trade model — one BUY/SELL entry in a user's ledger."""

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlmodel import SQLModel, Field


class Trade(SQLModel, table=True):
    __tablename__ = "trade"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    instrument_id: int = Field(foreign_key="instrument.id", index=True)
    side: str  # "BUY" or "SELL"
    quantity: int
    price: Decimal = Field(max_digits=12, decimal_places=4)
    currency: str  # "TWD" or "USD"
    trade_date: date = Field(index=True)
    broker_fee: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    other_fees: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    # BUY: gross + fees (cash out); SELL: gross - fees (cash in)
    total_amount: Decimal = Field(max_digits=14, decimal_places=2)
    notes: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
