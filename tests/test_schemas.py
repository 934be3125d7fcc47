"""Validation tests for the request schemas."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from finrecorder.schemas.preference import PreferenceUpdate
from finrecorder.schemas.trade import TradeCreate, TradeUpdate


def _payload(**overrides):
    data = {
        "symbol": " aapl ",
        "market": "us",
        "side": "buy",
        "quantity": 10,
        "price": "150.25",
        "trade_date": "2025-01-02",
    }
    data.update(overrides)
    return data


class TestTradeCreate:
    def test_normalizes_symbol_market_side(self):
        trade = TradeCreate(**_payload())
        assert trade.symbol == "AAPL"
        assert trade.market == "US"
        assert trade.side == "BUY"
        assert trade.price == Decimal("150.25")
        assert trade.trade_date == date(2025, 1, 2)
        assert trade.broker_fee is None

    def test_explicit_zero_fee_is_kept(self):
        assert TradeCreate(**_payload(broker_fee=0)).broker_fee == Decimal("0")

    @pytest.mark.parametrize(
        "field,value",
        [
            ("market", "HK"),
            ("side", "HOLD"),
            ("quantity", 0),
            ("quantity", -5),
            ("price", "0"),
            ("broker_fee", "-1"),
            ("symbol", "   "),
            ("trade_date", "not-a-date"),
        ],
    )
    def test_rejects_invalid(self, field, value):
        with pytest.raises(ValidationError):
            TradeCreate(**_payload(**{field: value}))


class TestTradeUpdate:
    def test_only_set_fields_are_dumped(self):
        patch = TradeUpdate(quantity=5, notes=None)
        assert patch.model_dump(exclude_unset=True) == {"quantity": 5, "notes": None}

    def test_side_normalized(self):
        assert TradeUpdate(side="sell").side == "SELL"

    def test_has_no_instrument_fields(self):
        assert "symbol" not in TradeUpdate.model_fields
        assert "market" not in TradeUpdate.model_fields

    def test_rejects_bad_side(self):
        with pytest.raises(ValidationError):
            TradeUpdate(side="SHORT")


class TestPreferenceUpdate:
    def test_valid_partial(self):
        pref = PreferenceUpdate(theme="dark", tw_broker_fee_rate="0.0006")
        assert pref.model_dump(exclude_unset=True) == {"theme": "dark", "tw_broker_fee_rate": Decimal("0.0006")}

    @pytest.mark.parametrize(
        "field,value",
        [
            ("theme", "neon"),
            ("default_market", "JP"),
            ("default_currency", "EUR"),
            ("tw_broker_fee_rate", "0.5"),
            ("us_broker_fee", "-1"),
        ],
    )
    def test_rejects_invalid(self, field, value):
        with pytest.raises(ValidationError):
            PreferenceUpdate(**{field: value})
