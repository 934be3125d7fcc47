"""Pydantic schemas for the user settings API."""

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from finrecorder.utils.constants import CURRENCIES, MARKETS

THEMES = ["light", "dark", "system"]


class PreferenceUpdate(BaseModel):
    default_market: str | None = None
    default_currency: str | None = None
    theme: str | None = None
    tw_broker_fee_rate: Decimal | None = Field(default=None, ge=0, le=Decimal("0.01"))
    tw_tax_rate: Decimal | None = Field(default=None, ge=0, le=Decimal("0.01"))
    us_broker_fee: Decimal | None = Field(default=None, ge=0)

    @field_validator("default_market")
    @classmethod
    def _validate_market(cls, value: str | None) -> str | None:
        if value is not None and value not in MARKETS:
            raise ValueError(f"must be one of: {', '.join(MARKETS)}")
        return value

    @field_validator("default_currency")
    @classmethod
    def _validate_currency(cls, value: str | None) -> str | None:
        if value is not None and value not in CURRENCIES:
            raise ValueError(f"must be one of: {', '.join(CURRENCIES)}")
        return value

    @field_validator("theme")
    @classmethod
    def _validate_theme(cls, value: str | None) -> str | None:
        if value is not None and value not in THEMES:
            raise ValueError(f"must be one of: {', '.join(THEMES)}")
        return value


class PreferenceRead(BaseModel):
    default_market: str
    default_currency: str
    theme: str
    tw_broker_fee_rate: Decimal
    tw_tax_rate: Decimal
    us_broker_fee: Decimal

    model_config = {"from_attributes": True}
