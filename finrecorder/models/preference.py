"""UserPreference model — per-user defaults and fee rates."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlmodel import SQLModel, Field


class UserPreference(SQLModel, table=True):
    __tablename__ = "user_preference"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True, unique=True)
    default_market: str = "TW"
    default_currency: str = "TWD"
    theme: str = "system"
    tw_broker_fee_rate: Decimal = Field(default=Decimal("0.001425"), max_digits=8, decimal_places=6)
    tw_tax_rate: Decimal = Field(default=Decimal("0.003"), max_digits=8, decimal_places=6)
    us_broker_fee: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
