"""PriceObservation model — one daily close per instrument."""

from datetime import date as date_type, datetime, timezone
from decimal import Decimal

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class PriceObservation(SQLModel, table=True):
    __tablename__ = "price_observation"
    __table_args__ = (UniqueConstraint("instrument_id", "date", name="ux_price_instrument_date"),)

    id: int | None = Field(default=None, primary_key=True)
    instrument_id: int = Field(foreign_key="instrument.id", index=True)
    date: date_type = Field(index=True)
    open: Decimal | None = Field(default=None, max_digits=12, decimal_places=4)
    high: Decimal | None = Field(default=None, max_digits=12, decimal_places=4)
    low: Decimal | None = Field(default=None, max_digits=12, decimal_places=4)
    close: Decimal = Field(max_digits=12, decimal_places=4)
    volume: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
