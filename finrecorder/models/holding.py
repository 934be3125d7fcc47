"""Holding model — current position per (user, instrument), derived from trades."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class Holding(SQLModel, table=True):
    __tablename__ = "holding"
    __table_args__ = (UniqueConstraint("user_id", "instrument_id", name="ux_holding_user_instrument"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    instrument_id: int = Field(foreign_key="instrument.id", index=True)
    quantity: int
    average_cost: Decimal = Field(max_digits=12, decimal_places=4)
    total_cost: Decimal = Field(max_digits=14, decimal_places=2)
    currency: str
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
