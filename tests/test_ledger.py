"""Tests for trade ledger mutations against an in-memory store."""

from datetime import date
from decimal import Decimal

import pytest
from sqlmodel import select

from finrecorder.engine import ledger
from finrecorder.errors import NotFoundError
from finrecorder.models.daily_snapshot import DailySnapshot
from finrecorder.models.holding import Holding
from finrecorder.models.instrument import Instrument
from finrecorder.models.preference import UserPreference
from finrecorder.models.trade import Trade
from finrecorder.schemas.trade import TradeCreate, TradeUpdate

D = Decimal


def _buy(symbol="2330", quantity=1000, price="100", **kwargs):
    return TradeCreate(
        symbol=symbol,
        market=kwargs.pop("market", "TW"),
        side="BUY",
        quantity=quantity,
        price=D(price),
        trade_date=kwargs.pop("trade_date", date(2025, 1, 2)),
        **kwargs,
    )


def _sell(symbol="2330", quantity=1000, price="100", **kwargs):
    data = _buy(symbol, quantity, price, **kwargs)
    return data.model_copy(update={"side": "SELL"})


def _holding(session, user_id, symbol="2330"):
    return session.exec(
        select(Holding).join(Instrument, Holding.instrument_id == Instrument.id).where(
            Holding.user_id == user_id, Instrument.symbol == symbol
        )
    ).first()


# ---------------------------------------------------------------------------
# 1. record_trade
# ---------------------------------------------------------------------------

class TestRecordTrade:
    def test_buy_with_fee_sets_total_and_average(self, session, user, gateway):
        trade = ledger.record_trade(session, user.id, _buy(broker_fee=D("20")), gateway=gateway)

        assert trade.total_amount == D("100020")
        assert trade.currency == "TWD"
        holding = _holding(session, user.id)
        assert holding.quantity == 1000
        assert holding.average_cost == D("100.02")
        assert holding.total_cost == D("100020")

    def test_fee_auto_computed_when_omitted(self, session, user, gateway):
        trade = ledger.record_trade(session, user.id, _buy(), gateway=gateway)
        assert trade.broker_fee == D("143")
        assert trade.tax == D("0")
        assert trade.total_amount == D("100143")

    def test_user_fee_preference_applies(self, session, user, gateway):
        session.add(UserPreference(user_id=user.id, tw_broker_fee_rate=D("0.0005")))
        session.commit()
        trade = ledger.record_trade(session, user.id, _buy(), gateway=gateway)
        assert trade.broker_fee == D("50")

    def test_symbol_upper_cased_and_instrument_reused(self, session, user, gateway):
        ledger.record_trade(session, user.id, _buy("aapl", 10, "150", market="US"), gateway=gateway)
        ledger.record_trade(session, user.id, _buy("AAPL", 5, "160", market="US"), gateway=gateway)
        instruments = session.exec(select(Instrument)).all()
        assert [i.symbol for i in instruments] == ["AAPL"]
        assert _holding(session, user.id, "AAPL").quantity == 15

    def test_sell_keeps_average_cost(self, session, user, gateway):
        ledger.record_trade(session, user.id, _buy(broker_fee=D("20")), gateway=gateway)
        ledger.record_trade(session, user.id, _sell(quantity=400, price="120"), gateway=gateway)
        holding = _holding(session, user.id)
        assert holding.quantity == 600
        assert holding.average_cost == D("100.02")
        assert holding.total_cost == D("60012")

    def test_full_sell_deletes_holding(self, session, user, gateway):
        ledger.record_trade(session, user.id, _buy(), gateway=gateway)
        ledger.record_trade(session, user.id, _sell(), gateway=gateway)
        assert _holding(session, user.id) is None

    def test_over_sell_deletes_holding(self, session, user, gateway):
        ledger.record_trade(session, user.id, _buy(quantity=10), gateway=gateway)
        ledger.record_trade(session, user.id, _sell(quantity=50), gateway=gateway)
        assert _holding(session, user.id) is None

    def test_refreshes_snapshot(self, session, user, gateway):
        ledger.record_trade(session, user.id, _buy(), gateway=gateway)
        snapshots = session.exec(select(DailySnapshot).where(DailySnapshot.user_id == user.id)).all()
        assert len(snapshots) == 1
        # no price stored: valued at average cost
        assert snapshots[0].total_value == D("100143")

    def test_snapshot_failure_does_not_fail_trade(self, session, user):
        class BrokenGateway:
            def latest_rate(self, *args):
                raise RuntimeError("rate service down")

        trade = ledger.record_trade(session, user.id, _buy(), gateway=BrokenGateway())
        assert trade.id is not None
        assert _holding(session, user.id).quantity == 1000


# ---------------------------------------------------------------------------
# 2. edit_trade / delete_trade
# ---------------------------------------------------------------------------

class TestEditTrade:
    def test_edit_quantity_recomputes_holding(self, session, user, gateway):
        trade = ledger.record_trade(session, user.id, _buy(broker_fee=D("20")), gateway=gateway)
        ledger.edit_trade(session, user.id, trade.id, TradeUpdate(quantity=500, broker_fee=D("10")), gateway=gateway)

        session.refresh(trade)
        assert trade.quantity == 500
        assert trade.total_amount == D("50010")
        holding = _holding(session, user.id)
        assert holding.quantity == 500
        assert holding.average_cost == D("100.02")

    def test_edit_notes_keeps_fees(self, session, user, gateway):
        trade = ledger.record_trade(session, user.id, _buy(broker_fee=D("1")), gateway=gateway)
        ledger.edit_trade(session, user.id, trade.id, TradeUpdate(notes="moved"), gateway=gateway)
        session.refresh(trade)
        assert trade.broker_fee == D("1")
        assert trade.notes == "moved"
        assert _holding(session, user.id).total_cost == D("100001")

    def test_edit_price_recomputes_omitted_fee(self, session, user, gateway):
        trade = ledger.record_trade(session, user.id, _buy(broker_fee=D("1")), gateway=gateway)
        ledger.edit_trade(session, user.id, trade.id, TradeUpdate(price=D("200")), gateway=gateway)
        session.refresh(trade)
        assert trade.broker_fee == D("285")
        assert trade.total_amount == D("200285")

    def test_edit_buy_into_sell(self, session, user, gateway):
        ledger.record_trade(session, user.id, _buy(quantity=1000, broker_fee=D("0")), gateway=gateway)
        second = ledger.record_trade(session, user.id, _buy(quantity=200, broker_fee=D("0")), gateway=gateway)
        ledger.edit_trade(session, user.id, second.id, TradeUpdate(side="SELL"), gateway=gateway)
        holding = _holding(session, user.id)
        assert holding.quantity == 800
        assert holding.average_cost == D("100")

    def test_edit_missing_trade(self, session, user, gateway):
        with pytest.raises(NotFoundError):
            ledger.edit_trade(session, user.id, 999, TradeUpdate(quantity=1), gateway=gateway)

    def test_cannot_edit_other_users_trade(self, session, user, gateway):
        trade = ledger.record_trade(session, user.id, _buy(), gateway=gateway)
        with pytest.raises(NotFoundError):
            ledger.edit_trade(session, user.id + 1, trade.id, TradeUpdate(quantity=1), gateway=gateway)


class TestDeleteTrade:
    def test_delete_buy_uses_loaded_cost(self, session, user, gateway):
        ledger.record_trade(session, user.id, _buy(quantity=1000, broker_fee=D("20")), gateway=gateway)
        second = ledger.record_trade(session, user.id, _buy(quantity=1000, price="110", broker_fee=D("30")), gateway=gateway)
        ledger.delete_trade(session, user.id, second.id, gateway=gateway)

        holding = _holding(session, user.id)
        assert holding.quantity == 1000
        assert holding.total_cost == D("100020")
        assert holding.average_cost == D("100.02")
        assert session.get(Trade, second.id) is None

    def test_delete_sell_restores_shares(self, session, user, gateway):
        ledger.record_trade(session, user.id, _buy(quantity=1000, broker_fee=D("20")), gateway=gateway)
        sell = ledger.record_trade(session, user.id, _sell(quantity=1000, price="130"), gateway=gateway)
        assert _holding(session, user.id) is None

        ledger.delete_trade(session, user.id, sell.id, gateway=gateway)
        holding = _holding(session, user.id)
        assert holding.quantity == 1000
        # a closed position is recreated at the sell price
        assert holding.average_cost == D("130")

    def test_delete_missing_trade(self, session, user, gateway):
        with pytest.raises(NotFoundError):
            ledger.delete_trade(session, user.id, 42, gateway=gateway)


# ---------------------------------------------------------------------------
# 3. recompute_holdings_from_history
# ---------------------------------------------------------------------------

def test_recompute_matches_incremental(session, user, gateway):
    ledger.record_trade(session, user.id, _buy(broker_fee=D("20")), gateway=gateway)
    ledger.record_trade(session, user.id, _buy(price="110", broker_fee=D("30"), trade_date=date(2025, 1, 5)), gateway=gateway)
    ledger.record_trade(session, user.id, _sell(quantity=400, price="120", trade_date=date(2025, 1, 8)), gateway=gateway)
    ledger.record_trade(session, user.id, _buy("AAPL", 10, "150", market="US"), gateway=gateway)
    ledger.record_trade(session, user.id, _sell("AAPL", 10, "155", market="US"), gateway=gateway)

    before = {(h.instrument_id, h.quantity, h.average_cost, h.total_cost) for h in session.exec(select(Holding)).all()}

    # corrupt the derived state, then rebuild it
    for h in session.exec(select(Holding)).all():
        h.quantity = 1
        session.add(h)
    session.commit()

    result = ledger.recompute_holdings_from_history(session, user.id)
    after = {(h.instrument_id, h.quantity, h.average_cost, h.total_cost) for h in session.exec(select(Holding)).all()}

    assert result == {"trades": 5, "holdings": 1}
    assert after == before


def test_recompute_matches_incremental_with_repeating_averages(session, user, gateway):
    # 100/3 and 71/7 never terminate, so each stored step is rounded
    ledger.record_trade(session, user.id, _buy("MSFT", 3, "33", market="US", broker_fee=D("1")), gateway=gateway)
    ledger.record_trade(
        session, user.id, _sell("MSFT", 1, "40", market="US", broker_fee=D("0"), trade_date=date(2025, 1, 3)), gateway=gateway
    )
    ledger.record_trade(
        session, user.id, _buy("MSFT", 7, "10", market="US", broker_fee=D("1"), trade_date=date(2025, 1, 6)), gateway=gateway
    )

    h = _holding(session, user.id, "MSFT")
    incremental = (h.quantity, h.average_cost, h.total_cost)
    assert incremental == (9, D("15.2967"), D("137.67"))

    ledger.recompute_holdings_from_history(session, user.id)
    session.expire_all()
    h = _holding(session, user.id, "MSFT")
    assert (h.quantity, h.average_cost, h.total_cost) == incremental


def test_list_trades_newest_first(session, user, gateway):
    ledger.record_trade(session, user.id, _buy(trade_date=date(2025, 1, 2)), gateway=gateway)
    ledger.record_trade(session, user.id, _buy("AAPL", 1, "10", market="US", trade_date=date(2025, 2, 2)), gateway=gateway)

    page = ledger.list_trades(session, user.id, page=1, limit=10)
    assert page["total"] == 2
    assert [t.symbol for t in page["items"]] == ["AAPL", "2330"]

    tw_only = ledger.list_trades(session, user.id, market="TW")
    assert [t.symbol for t in tw_only["items"]] == ["2330"]
