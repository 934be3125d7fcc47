"""Instrument model — a tradable symbol on the TW or US market."""

from datetime import datetime, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from finrecorder.utils.constants import MARKET_CURRENCY


class Instrument(SQLModel, table=True):
    __tablename__ = "instrument"
    __table_args__ = (UniqueConstraint("symbol", "market", name="ux_instrument_symbol_market"),)

    id: int | None = Field(default=None, primary_key=True)
    symbol: str = Field(index=True)  # "2330", "AAPL"
    market: str  # "TW" or "US"
    name: str | None = None
    name_tw: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def currency(self) -> str:
        return MARKET_CURRENCY[self.market]

    @property
    def display_name(self) -> str:
        return self.name_tw or self.name or self.symbol
