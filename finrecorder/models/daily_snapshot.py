"""DailySnapshot model — one net-value record per user per day."""

from datetime import date as date_type, datetime, timezone
from decimal import Decimal

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class DailySnapshot(SQLModel, table=True):
    __tablename__ = "daily_snapshot"
    __table_args__ = (UniqueConstraint("user_id", "date", name="ux_daily_snapshot_user_date"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    date: date_type = Field(index=True)
    tw_value: Decimal = Field(default=Decimal("0"), max_digits=16, decimal_places=2)  # TWD
    us_value: Decimal = Field(default=Decimal("0"), max_digits=16, decimal_places=2)  # USD, unconverted
    total_value: Decimal = Field(max_digits=16, decimal_places=2)  # TWD
    usd_to_twd_rate: Decimal | None = Field(default=None, max_digits=8, decimal_places=4)
    daily_return: Decimal | None = Field(default=None, max_digits=10, decimal_places=6)
    cumulative_return: Decimal | None = Field(default=None, max_digits=10, decimal_places=6)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
