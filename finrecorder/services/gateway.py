"""Price/rate gateway: the engine's only view of market data.

``StoreGateway`` answers from stored observations and, for the USD/TWD rate,
falls back through the live sources, the newest stored rate and finally the
configured default.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Protocol

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, select

from finrecorder.config import settings
from finrecorder.models.exchange_rate import ExchangeRateObservation
from finrecorder.models.price import PriceObservation
from finrecorder.services import quotes

logger = logging.getLogger(__name__)


class PriceGateway(Protocol):
    def latest_close(self, instrument_id: int) -> Decimal | None: ...

    def close_on_date(self, instrument_id: int, day: date) -> Decimal | None: ...

    def latest_rate(self, from_currency: str, to_currency: str) -> Decimal: ...

    def rate_on_date(self, from_currency: str, to_currency: str, day: date) -> Decimal: ...


def dialect_insert(session: Session, table):
    """``INSERT`` construct that supports ``on_conflict_do_update`` for the bound dialect."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(table)
    return sqlite_insert(table)


def store_rate(session: Session, quote: quotes.RateQuote, with_inverse: bool = True) -> None:
    """Upsert a rate observation (and its inverse) keyed by pair and date."""
    rows = [(quote.from_currency, quote.to_currency, quote.rate.quantize(Decimal("0.000001")))]
    if with_inverse and quote.rate > 0:
        rows.append((quote.to_currency, quote.from_currency, (1 / quote.rate).quantize(Decimal("0.000001"))))

    table = ExchangeRateObservation.__table__
    for from_currency, to_currency, rate in rows:
        stmt = dialect_insert(session, table).values(
            from_currency=from_currency,
            to_currency=to_currency,
            rate=rate,
            date=quote.date,
            created_at=datetime.now(timezone.utc),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["from_currency", "to_currency", "date"],
            set_={"rate": stmt.excluded.rate},
        )
        session.execute(stmt)


class StoreGateway:
    """Gateway backed by the price and exchange-rate tables."""

    def __init__(
        self,
        session: Session,
        rate_sources: Iterable[Callable[[], quotes.RateQuote | None]] | None = None,
        today: date | None = None,
    ):
        self.session = session
        self.rate_sources = tuple(rate_sources) if rate_sources is not None else None
        self.today = today

    def _today(self) -> date:
        return self.today or quotes.local_today()

    def latest_close(self, instrument_id: int) -> Decimal | None:
        row = self.session.exec(
            select(PriceObservation)
            .where(PriceObservation.instrument_id == instrument_id)
            .order_by(PriceObservation.date.desc())
        ).first()
        return row.close if row else None

    def close_on_date(self, instrument_id: int, day: date) -> Decimal | None:
        """Latest close on or before ``day``."""
        row = self.session.exec(
            select(PriceObservation)
            .where(PriceObservation.instrument_id == instrument_id, PriceObservation.date <= day)
            .order_by(PriceObservation.date.desc())
        ).first()
        return row.close if row else None

    def _stored_rate(self, from_currency: str, to_currency: str, day: date | None = None, exact: bool = False):
        stmt = select(ExchangeRateObservation).where(
            ExchangeRateObservation.from_currency == from_currency,
            ExchangeRateObservation.to_currency == to_currency,
        )
        if day is not None:
            stmt = stmt.where(ExchangeRateObservation.date == day if exact else ExchangeRateObservation.date <= day)
        row = self.session.exec(stmt.order_by(ExchangeRateObservation.date.desc())).first()
        return row.rate if row else None

    def _default_rate(self, from_currency: str, to_currency: str) -> Decimal:
        default = Decimal(str(settings.default_usd_twd_rate))
        logger.warning(f"No {from_currency}/{to_currency} rate available, using default {default}")
        if (from_currency, to_currency) == ("TWD", "USD"):
            return 1 / default
        return default

    def latest_rate(self, from_currency: str, to_currency: str) -> Decimal:
        if from_currency == to_currency:
            return Decimal("1")

        rate = self._stored_rate(from_currency, to_currency, self._today(), exact=True)
        if rate:
            return rate

        sources = quotes.RATE_SOURCES if self.rate_sources is None else self.rate_sources
        quote = quotes.fetch_latest_usd_twd(sources) if sources else None
        if quote is not None:
            store_rate(self.session, quote)
            if quote.date != self._today():
                # a lagging quote is filed under today too
                store_rate(self.session, replace(quote, date=self._today()))
            self.session.commit()
            if (from_currency, to_currency) == ("USD", "TWD"):
                return quote.rate
            return 1 / quote.rate

        rate = self._stored_rate(from_currency, to_currency)
        if rate:
            return rate
        return self._default_rate(from_currency, to_currency)

    def rate_on_date(self, from_currency: str, to_currency: str, day: date) -> Decimal:
        """Stored rate on or before ``day``; no live fetch for past dates."""
        if from_currency == to_currency:
            return Decimal("1")
        rate = self._stored_rate(from_currency, to_currency, day)
        if rate:
            return rate
        rate = self._stored_rate(from_currency, to_currency)
        if rate:
            return rate
        return self._default_rate(from_currency, to_currency)
