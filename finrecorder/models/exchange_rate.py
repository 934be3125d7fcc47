"""ExchangeRateObservation model — one rate per currency pair per day."""

from datetime import date as date_type, datetime, timezone
from decimal import Decimal

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class ExchangeRateObservation(SQLModel, table=True):
    __tablename__ = "exchange_rate"
    __table_args__ = (
        UniqueConstraint("from_currency", "to_currency", "date", name="ux_exchange_rate_pair_date"),
    )

    id: int | None = Field(default=None, primary_key=True)
    from_currency: str
    to_currency: str
    rate: Decimal = Field(max_digits=12, decimal_places=6)
    date: date_type = Field(index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
