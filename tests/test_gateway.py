"""Tests for the store-backed price/rate gateway, quote parsing and market data jobs."""

from datetime import date
from decimal import Decimal

import pandas as pd
from sqlmodel import select

from finrecorder.engine.market_jobs import import_price_history, update_exchange_rate, update_prices
from finrecorder.models.exchange_rate import ExchangeRateObservation
from finrecorder.models.instrument import Instrument
from finrecorder.models.price import PriceObservation
from finrecorder.services import quotes
from finrecorder.services.gateway import StoreGateway, store_rate
from finrecorder.services.quotes import (
    PriceQuote,
    RateQuote,
    parse_market_report,
    parse_roc_date,
    yahoo_symbol,
)

D = Decimal


def _instrument(session, symbol="2330", market="TW"):
    instrument = Instrument(symbol=symbol, market=market)
    session.add(instrument)
    session.commit()
    session.refresh(instrument)
    return instrument


def _rate(session, day, rate, pair=("USD", "TWD")):
    session.add(ExchangeRateObservation(from_currency=pair[0], to_currency=pair[1], rate=D(rate), date=day))
    session.commit()


# ---------------------------------------------------------------------------
# 1. Closes
# ---------------------------------------------------------------------------

class TestCloses:
    def test_latest_and_on_date(self, session):
        inst = _instrument(session)
        for day, close in [(date(2025, 1, 2), "100"), (date(2025, 1, 3), "105"), (date(2025, 1, 7), "98.5")]:
            session.add(PriceObservation(instrument_id=inst.id, date=day, close=D(close)))
        session.commit()

        gw = StoreGateway(session)
        assert gw.latest_close(inst.id) == D("98.5")
        assert gw.close_on_date(inst.id, date(2025, 1, 3)) == D("105")
        # weekend falls back to the previous trading day
        assert gw.close_on_date(inst.id, date(2025, 1, 5)) == D("105")
        assert gw.close_on_date(inst.id, date(2024, 12, 31)) is None

    def test_no_price(self, session):
        inst = _instrument(session)
        assert StoreGateway(session).latest_close(inst.id) is None


# ---------------------------------------------------------------------------
# 2. USD/TWD rate fallback chain
# ---------------------------------------------------------------------------

class TestLatestRate:
    def test_same_currency(self, session):
        assert StoreGateway(session).latest_rate("TWD", "TWD") == D("1")

    def test_stored_today_wins(self, session, today):
        _rate(session, today, "31.5")

        def source():
            raise AssertionError("live source must not be called")

        gw = StoreGateway(session, rate_sources=[source], today=today)
        assert gw.latest_rate("USD", "TWD") == D("31.5")

    def test_live_source_is_stored_with_inverse(self, session, today):
        quote = RateQuote("USD", "TWD", D("31.25"), today, "test")
        gw = StoreGateway(session, rate_sources=[lambda: None, lambda: quote], today=today)

        assert gw.latest_rate("USD", "TWD") == D("31.25")
        rows = {(r.from_currency, r.to_currency): r.rate for r in session.exec(select(ExchangeRateObservation)).all()}
        assert rows[("USD", "TWD")] == D("31.25")
        assert rows[("TWD", "USD")] == D("0.032")

    def test_lagging_live_quote_is_not_refetched(self, session, today):
        calls = []

        def source():
            calls.append(1)
            if len(calls) > 1:
                raise AssertionError("rate was fetched twice")
            return RateQuote("USD", "TWD", D("31.1"), date(2025, 3, 7), "test")

        gw = StoreGateway(session, rate_sources=[source], today=today)
        assert gw.latest_rate("USD", "TWD") == D("31.1")
        assert gw.latest_rate("USD", "TWD") == D("31.1")
        assert gw.latest_rate("TWD", "USD") == D("0.032154")
        assert calls == [1]

        days = {r.date for r in session.exec(select(ExchangeRateObservation)).all()}
        assert days == {date(2025, 3, 7), today}

    def test_falls_back_to_latest_stored(self, session, today):
        _rate(session, date(2025, 3, 10), "30.9")
        gw = StoreGateway(session, rate_sources=[lambda: None], today=today)
        assert gw.latest_rate("USD", "TWD") == D("30.9")

    def test_falls_back_to_default(self, session, today):
        gw = StoreGateway(session, rate_sources=[], today=today)
        assert gw.latest_rate("USD", "TWD") == D("32")
        assert gw.latest_rate("TWD", "USD") == 1 / D("32")


class TestRateOnDate:
    def test_on_or_before(self, session):
        _rate(session, date(2025, 1, 2), "30")
        _rate(session, date(2025, 1, 10), "31")
        gw = StoreGateway(session)
        assert gw.rate_on_date("USD", "TWD", date(2025, 1, 5)) == D("30")
        assert gw.rate_on_date("USD", "TWD", date(2025, 1, 10)) == D("31")

    def test_before_any_rate_uses_latest(self, session):
        _rate(session, date(2025, 1, 10), "31")
        assert StoreGateway(session).rate_on_date("USD", "TWD", date(2024, 6, 1)) == D("31")

    def test_store_rate_upserts(self, session, today):
        store_rate(session, RateQuote("USD", "TWD", D("30"), today, "a"))
        store_rate(session, RateQuote("USD", "TWD", D("32"), today, "b"))
        session.commit()
        rows = session.exec(
            select(ExchangeRateObservation).where(ExchangeRateObservation.from_currency == "USD")
        ).all()
        assert len(rows) == 1
        assert StoreGateway(session).rate_on_date("USD", "TWD", today) == D("32")


# ---------------------------------------------------------------------------
# 3. Quote parsing
# ---------------------------------------------------------------------------

def _row(code, name, close, volume="1,234,567"):
    return [code, name, volume, "1,000", "9,999", "590.00", "600.00", "585.00", close, "+", "5.00"]


def test_parse_market_report():
    payload = {
        "stat": "OK",
        "date": "20250102",
        "data9": [
            _row("2330", "台積電", "1,025.00"),
            _row("0050", "元大台灣50", "180.50"),
            _row("9999", "停牌", "--"),
        ],
    }
    quotes = parse_market_report(payload)

    assert set(quotes) == {"2330", "0050"}
    assert quotes["2330"].close == D("1025.00")
    assert quotes["2330"].date == date(2025, 1, 2)
    assert quotes["2330"].volume == 1234567
    assert quotes["0050"].name == "元大台灣50"


def test_parse_market_report_not_ok():
    assert parse_market_report({"stat": "很抱歉，沒有符合條件的資料!"}) == {}


def test_parse_roc_date():
    assert parse_roc_date("114/01/02") == date(2025, 1, 2)


def test_yahoo_symbol():
    assert yahoo_symbol("2330", "TW") == "2330.TW"
    assert yahoo_symbol("AAPL", "US") == "AAPL"


def test_fetch_twse_stock_day(monkeypatch):
    payload = {
        "stat": "OK",
        "title": "114年01月 6488 環球晶 各日成交資訊",
        "data": [
            ["114/01/02", "1,200", "500,000", "410.00", "415.00", "405.00", "412.50", "+2.50", "900"],
            ["114/01/03", "1,500", "620,000", "412.50", "420.00", "411.00", "418.00", "+5.50", "1,100"],
        ],
    }
    monkeypatch.setattr(quotes, "_get_json", lambda *a, **kw: payload)

    quote = quotes.fetch_twse_stock_day("6488", date(2025, 1, 3))
    assert quote.date == date(2025, 1, 3)
    assert quote.close == D("418.00")
    assert quote.volume == 1500
    assert quote.name == "環球晶"


def test_tw_quotes_fall_back_per_symbol(monkeypatch):
    day = date(2025, 1, 3)
    yahoo_calls = []

    def yahoo(symbol, market="US"):
        yahoo_calls.append(symbol)
        return PriceQuote(symbol, market, day, D("45"))

    monkeypatch.setattr(quotes, "fetch_twse_market_report", lambda: {"2330": PriceQuote("2330", "TW", day, D("1060"))})
    monkeypatch.setattr(
        quotes,
        "fetch_twse_stock_day",
        lambda symbol: PriceQuote(symbol, "TW", day, D("418")) if symbol == "6488" else None,
    )
    monkeypatch.setattr(quotes, "fetch_yahoo_quote", yahoo)

    result = quotes.fetch_tw_quotes(["2330", "6488", "1101"])

    assert {s: q.close for s, q in result.items()} == {"2330": D("1060"), "6488": D("418"), "1101": D("45")}
    # only the symbol TWSE could not price reaches Yahoo
    assert yahoo_calls == ["1101"]


# ---------------------------------------------------------------------------
# 4. Market data jobs
# ---------------------------------------------------------------------------

def test_update_prices_upserts_and_reports_missing(db_engine, session):
    tsmc = _instrument(session, "2330")
    missing = _instrument(session, "1101")
    day = date(2025, 1, 2)

    def fetch(symbols):
        assert sorted(symbols) == ["1101", "2330"]
        return {"2330": PriceQuote("2330", "TW", day, D("600"), name="台積電")}

    result = update_prices("TW", db_engine=db_engine, fetchers={"TW": fetch})
    assert result["updated"] == {"TW": 1}
    assert result["errors"] == ["TW:1101 - no price"]
    assert result["success"] is False

    # second run overwrites the same (instrument, date) row
    update_prices("TW", db_engine=db_engine, fetchers={"TW": lambda s: {"2330": PriceQuote("2330", "TW", day, D("610"))}})

    session.expire_all()
    rows = session.exec(select(PriceObservation).where(PriceObservation.instrument_id == tsmc.id)).all()
    assert len(rows) == 1
    assert rows[0].close == D("610")
    assert session.get(Instrument, tsmc.id).name_tw == "台積電"
    assert session.get(Instrument, missing.id).name_tw is None


def test_update_exchange_rate(db_engine, session, today):
    result = update_exchange_rate(db_engine=db_engine, sources=[lambda: RateQuote("USD", "TWD", D("32.5"), today, "test")])
    assert result["success"] is True
    assert result["rate"] == 32.5
    assert StoreGateway(session).rate_on_date("USD", "TWD", today) == D("32.5")


def test_update_exchange_rate_all_sources_fail(db_engine):
    result = update_exchange_rate(db_engine=db_engine, sources=[lambda: None])
    assert result == {"success": False, "error": "Failed to fetch exchange rate"}


def test_import_price_history(session):
    inst = _instrument(session, "AAPL", "US")
    frame = pd.DataFrame(
        {
            "open": [150.0, 151.0, 152.0],
            "high": [155.0, 156.0, 157.0],
            "low": [149.0, 150.0, float("nan")],
            "close": [154.0, float("nan"), 156.12341],
            "volume": [1000, 2000, 3000],
        },
        index=[date(2025, 1, 2), date(2025, 1, 3), date(2025, 1, 6)],
    )

    written = import_price_history(session, inst, date(2025, 1, 1), date(2025, 1, 31), fetch_history=lambda *a: frame)

    assert written == 2
    rows = session.exec(
        select(PriceObservation).where(PriceObservation.instrument_id == inst.id).order_by(PriceObservation.date)
    ).all()
    assert [r.date for r in rows] == [date(2025, 1, 2), date(2025, 1, 6)]
    assert rows[1].close == D("156.1234")
    assert rows[1].low is None
