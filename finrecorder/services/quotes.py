"""External market data sources: TWSE, Yahoo Finance, ExchangeRate-API, Taiwan CBC.

Every fetcher returns ``None`` (or an empty mapping) when its source has no
answer; network and parse failures are logged, never raised.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from zoneinfo import ZoneInfo

import pandas as pd
import requests
import yfinance as yf

from finrecorder.config import settings

logger = logging.getLogger(__name__)

TWSE_API_BASE = "https://www.twse.com.tw/exchangeReport"
EXCHANGE_RATE_API_URL = "https://open.er-api.com/v6/latest/USD"
CBC_RATE_URL = "https://www.cbc.gov.tw/tw/public/data/daily/2ER.json"
YAHOO_USD_TWD = "USDTWD=X"

_BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
}


@dataclass
class PriceQuote:
    symbol: str
    market: str
    date: date
    close: Decimal
    open: Decimal | None = None
    high: Decimal | None = None
    low: Decimal | None = None
    volume: int | None = None
    name: str | None = None


@dataclass
class RateQuote:
    from_currency: str
    to_currency: str
    rate: Decimal
    date: date
    source: str


def local_today() -> date:
    return datetime.now(ZoneInfo(settings.timezone)).date()


def _parse_number(text) -> Decimal | None:
    """Parse a TWSE cell such as "1,025.00"; "--" and blanks mean no value."""
    if text is None:
        return None
    cleaned = str(text).replace(",", "").strip()
    if not cleaned or cleaned.startswith("--"):
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def parse_roc_date(text: str) -> date:
    """Convert a Republic-of-China calendar date ("114/01/02") to a date."""
    roc_year, month, day = text.strip().split("/")
    return date(int(roc_year) + 1911, int(month), int(day))


def _get_json(url: str, params: dict | None = None, headers: dict | None = None):
    response = requests.get(
        url,
        params=params,
        headers=headers or _BROWSER_HEADERS,
        timeout=settings.price_fetch_timeout,
    )
    response.raise_for_status()
    return response.json()


# ---------------------------------------------------------------------------
# TWSE
# ---------------------------------------------------------------------------

def parse_market_report(payload: dict) -> dict[str, PriceQuote]:
    """Parse a MI_INDEX response into quotes keyed by symbol.

    Listed stocks are in ``data9``: code, name, volume, ..., open(5),
    high(6), low(7), close(8). Rows without a close are skipped.
    """
    if payload.get("stat") != "OK" or not payload.get("date"):
        return {}
    raw_date = payload["date"]
    if "/" in raw_date:
        report_date = parse_roc_date(raw_date)
    else:
        report_date = datetime.strptime(raw_date, "%Y%m%d").date()

    quotes: dict[str, PriceQuote] = {}
    for row in payload.get("data9") or []:
        close = _parse_number(row[8])
        if close is None:
            continue
        volume = _parse_number(row[2])
        symbol = str(row[0]).strip()
        quotes[symbol] = PriceQuote(
            symbol=symbol,
            market="TW",
            date=report_date,
            open=_parse_number(row[5]),
            high=_parse_number(row[6]),
            low=_parse_number(row[7]),
            close=close,
            volume=int(volume) if volume is not None else None,
            name=str(row[1]).strip() or None,
        )
    return quotes


def fetch_twse_market_report(day: date | None = None) -> dict[str, PriceQuote]:
    """All listed-stock closes for one trading day. Empty on holidays."""
    day = day or local_today()
    try:
        payload = _get_json(
            f"{TWSE_API_BASE}/MI_INDEX",
            params={"response": "json", "date": day.strftime("%Y%m%d"), "type": "ALLBUT0999"},
        )
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"TWSE market report fetch failed for {day}: {e}")
        return {}
    quotes = parse_market_report(payload)
    if not quotes:
        logger.info(f"TWSE market report has no data for {day} (holiday?)")
    return quotes


def fetch_twse_stock_day(symbol: str, day: date | None = None) -> PriceQuote | None:
    """Latest row of a stock's monthly STOCK_DAY report."""
    day = day or local_today()
    try:
        payload = _get_json(
            f"{TWSE_API_BASE}/STOCK_DAY",
            params={"response": "json", "date": day.strftime("%Y%m%d"), "stockNo": symbol},
        )
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"TWSE STOCK_DAY fetch failed for {symbol}: {e}")
        return None

    rows = payload.get("data") or []
    if payload.get("stat") != "OK" or not rows:
        return None
    row = rows[-1]
    close = _parse_number(row[6])
    if close is None:
        return None
    volume = _parse_number(row[1])
    title = (payload.get("title") or "").split()
    return PriceQuote(
        symbol=symbol,
        market="TW",
        date=parse_roc_date(row[0]),
        open=_parse_number(row[3]),
        high=_parse_number(row[4]),
        low=_parse_number(row[5]),
        close=close,
        volume=int(volume) if volume is not None else None,
        name=title[2] if len(title) > 2 else None,
    )


# ---------------------------------------------------------------------------
# Yahoo Finance
# ---------------------------------------------------------------------------

def yahoo_symbol(symbol: str, market: str) -> str:
    return f"{symbol}.TW" if market == "TW" else symbol


def to_decimal(value) -> Decimal | None:
    if value is None or pd.isna(value):
        return None
    return Decimal(str(round(float(value), 4)))


def fetch_yahoo_quote(symbol: str, market: str = "US") -> PriceQuote | None:
    """Most recent daily bar from Yahoo Finance."""
    try:
        bars = yf.Ticker(yahoo_symbol(symbol, market)).history(period="5d", interval="1d", auto_adjust=False)
    except Exception as e:
        logger.warning(f"Yahoo quote fetch failed for {symbol}: {e}")
        return None
    if bars is None or bars.empty:
        return None

    last = bars.iloc[-1]
    close = to_decimal(last.get("Close"))
    if close is None:
        return None
    volume = last.get("Volume")
    return PriceQuote(
        symbol=symbol,
        market=market,
        date=bars.index[-1].date(),
        open=to_decimal(last.get("Open")),
        high=to_decimal(last.get("High")),
        low=to_decimal(last.get("Low")),
        close=close,
        volume=int(volume) if volume is not None and not pd.isna(volume) else None,
    )


def fetch_price_history(symbol: str, market: str, start: date, end: date) -> pd.DataFrame:
    """Daily bars between ``start`` and ``end`` inclusive, indexed by date.

    Columns: open, high, low, close, volume. Empty frame on failure.
    """
    try:
        bars = yf.Ticker(yahoo_symbol(symbol, market)).history(
            start=start.isoformat(),
            end=(end + timedelta(days=1)).isoformat(),
            interval="1d",
            auto_adjust=False,
        )
    except Exception as e:
        logger.warning(f"Yahoo history fetch failed for {symbol}: {e}")
        return pd.DataFrame(columns=["open", "high", "low", "close", "volume"])
    if bars is None or bars.empty:
        return pd.DataFrame(columns=["open", "high", "low", "close", "volume"])

    frame = bars.rename(columns=str.lower)[["open", "high", "low", "close", "volume"]]
    frame = frame.dropna(subset=["close"])
    frame.index = [ts.date() for ts in frame.index]
    return frame


# ---------------------------------------------------------------------------
# Batch quotes per market
# ---------------------------------------------------------------------------

def fetch_tw_quotes(symbols: Iterable[str]) -> dict[str, PriceQuote]:
    """TW closes from the TWSE daily report.

    A symbol missing from the report (OTC listings, a late report) falls back
    to its own STOCK_DAY history, then to Yahoo.
    """
    symbols = list(symbols)
    if not symbols:
        return {}
    report = fetch_twse_market_report()
    quotes: dict[str, PriceQuote] = {}
    for symbol in symbols:
        quote = report.get(symbol)
        if quote is None:
            quote = fetch_twse_stock_day(symbol)
        if quote is None:
            quote = fetch_yahoo_quote(symbol, market="TW")
        if quote is None:
            logger.warning(f"No TW close available for {symbol}")
            continue
        quotes[symbol] = quote
    return quotes


def fetch_us_quotes(symbols: Iterable[str]) -> dict[str, PriceQuote]:
    quotes: dict[str, PriceQuote] = {}
    for symbol in symbols:
        quote = fetch_yahoo_quote(symbol, market="US")
        if quote is None:
            logger.warning(f"No US close available for {symbol}")
            continue
        quotes[symbol] = quote
    return quotes


# ---------------------------------------------------------------------------
# USD/TWD
# ---------------------------------------------------------------------------

def fetch_usd_twd_from_yahoo() -> RateQuote | None:
    quote = fetch_yahoo_quote(YAHOO_USD_TWD, market="FX")
    if quote is None:
        return None
    return RateQuote("USD", "TWD", quote.close, quote.date, "Yahoo Finance")


def fetch_usd_twd_from_exchange_rate_api() -> RateQuote | None:
    try:
        payload = _get_json(EXCHANGE_RATE_API_URL, headers={"User-Agent": "FinRecorder/1.0"})
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"ExchangeRate-API fetch failed: {e}")
        return None

    rate = (payload.get("rates") or {}).get("TWD")
    if payload.get("result") != "success" or not rate:
        return None
    updated = payload.get("time_last_update_unix")
    day = datetime.fromtimestamp(updated, timezone.utc).date() if updated else local_today()
    return RateQuote("USD", "TWD", Decimal(str(rate)), day, "ExchangeRate-API")


def fetch_usd_twd_from_cbc() -> RateQuote | None:
    """Central Bank of the ROC daily closing rate (published after 16:00)."""
    try:
        payload = _get_json(CBC_RATE_URL)
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Taiwan CBC rate fetch failed: {e}")
        return None

    row = next((item for item in payload or [] if item.get("幣別") == "USD"), None)
    if row is None:
        return None
    rate = _parse_number(row.get("收盤匯率") or row.get("即期賣出"))
    if rate is None:
        return None
    return RateQuote("USD", "TWD", rate, local_today(), "Taiwan CBC")


# Tried in order; the first answer wins
RATE_SOURCES: tuple[Callable[[], RateQuote | None], ...] = (
    fetch_usd_twd_from_yahoo,
    fetch_usd_twd_from_exchange_rate_api,
    fetch_usd_twd_from_cbc,
)


def fetch_latest_usd_twd(sources: Iterable[Callable[[], RateQuote | None]] = RATE_SOURCES) -> RateQuote | None:
    for source in sources:
        quote = source()
        if quote is not None and quote.rate > 0:
            logger.info(f"USD/TWD {quote.rate} from {quote.source}")
            return quote
    logger.warning("All USD/TWD rate sources failed")
    return None
