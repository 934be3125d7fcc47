"""Market data refresh jobs: closing prices, USD/TWD rate, price history import."""

import logging
from collections.abc import Callable, Iterable
from datetime import date, datetime, timezone

import pandas as pd
from sqlmodel import Session, select

from finrecorder.database import engine as default_engine
from finrecorder.models.instrument import Instrument
from finrecorder.models.price import PriceObservation
from finrecorder.services import quotes
from finrecorder.services.gateway import dialect_insert, store_rate

logger = logging.getLogger(__name__)

PRICE_FETCHERS: dict[str, Callable[[Iterable[str]], dict[str, quotes.PriceQuote]]] = {
    "TW": quotes.fetch_tw_quotes,
    "US": quotes.fetch_us_quotes,
}


def upsert_price(session: Session, instrument_id: int, quote: quotes.PriceQuote) -> None:
    values = {
        "open": quote.open,
        "high": quote.high,
        "low": quote.low,
        "close": quote.close,
        "volume": quote.volume,
    }
    stmt = dialect_insert(session, PriceObservation.__table__).values(
        instrument_id=instrument_id,
        date=quote.date,
        created_at=datetime.now(timezone.utc),
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["instrument_id", "date"],
        set_={key: stmt.excluded[key] for key in values},
    )
    session.execute(stmt)


def update_prices(market: str | None = None, db_engine=None, fetchers: dict | None = None) -> dict:
    """Fetch today's closes for every active instrument (optionally one market)."""
    db_engine = db_engine or default_engine
    fetchers = fetchers or PRICE_FETCHERS
    markets = [market] if market else list(fetchers)
    result = {"updated": {m: 0 for m in markets}, "errors": []}

    with Session(db_engine) as session:
        for mkt in markets:
            instruments = session.exec(
                select(Instrument).where(Instrument.market == mkt, Instrument.is_active == True)  # noqa: E712
            ).all()
            if not instruments:
                continue

            fetched = fetchers[mkt]([i.symbol for i in instruments])
            for instrument in instruments:
                quote = fetched.get(instrument.symbol)
                if quote is None:
                    result["errors"].append(f"{mkt}:{instrument.symbol} - no price")
                    continue
                upsert_price(session, instrument.id, quote)
                if mkt == "TW" and quote.name and not instrument.name_tw:
                    instrument.name_tw = quote.name
                    session.add(instrument)
                result["updated"][mkt] += 1
            session.commit()
            logger.info(f"Updated {result['updated'][mkt]}/{len(instruments)} {mkt} closes")

    result["success"] = not result["errors"]
    return result


def update_exchange_rate(db_engine=None, sources=None) -> dict:
    """Fetch USD/TWD from the live sources and store it with its inverse."""
    db_engine = db_engine or default_engine
    quote = quotes.fetch_latest_usd_twd(quotes.RATE_SOURCES if sources is None else sources)
    if quote is None:
        return {"success": False, "error": "Failed to fetch exchange rate"}

    with Session(db_engine) as session:
        store_rate(session, quote)
        session.commit()
    logger.info(f"Stored USD/TWD {quote.rate} for {quote.date} ({quote.source})")
    return {"success": True, "rate": float(quote.rate), "date": quote.date, "source": quote.source}


def import_price_history(
    session: Session,
    instrument: Instrument,
    start: date,
    end: date,
    fetch_history: Callable[[str, str, date, date], pd.DataFrame] = quotes.fetch_price_history,
) -> int:
    """Store daily closes for ``instrument`` over [start, end]. Returns rows written."""
    frame = fetch_history(instrument.symbol, instrument.market, start, end)
    written = 0
    for day, bar in frame.iterrows():
        close = quotes.to_decimal(bar["close"])
        if close is None:
            continue
        volume = bar.get("volume")
        upsert_price(
            session,
            instrument.id,
            quotes.PriceQuote(
                symbol=instrument.symbol,
                market=instrument.market,
                date=day,
                open=quotes.to_decimal(bar.get("open")),
                high=quotes.to_decimal(bar.get("high")),
                low=quotes.to_decimal(bar.get("low")),
                close=close,
                volume=int(volume) if volume is not None and not pd.isna(volume) else None,
            ),
        )
        written += 1
    session.commit()
    logger.info(f"Imported {written} closes for {instrument.market}:{instrument.symbol} ({start} to {end})")
    return written
