"""Shared fixtures: in-memory SQLite store, a user, and a fake price/rate gateway."""

import os

# Must be set before finrecorder.config is imported anywhere
os.environ.setdefault("FR_DATABASE_URL", "sqlite://")
os.environ.setdefault("FR_SCHEDULER_ENABLED", "false")
os.environ.setdefault("FR_CRON_SECRET", "")

from datetime import date
from decimal import Decimal

import pytest
from sqlmodel import Session

from finrecorder.database import build_engine, create_db_and_tables
from finrecorder.models.user import User
from finrecorder.services import quotes


class FakeGateway:
    """In-memory gateway: ``closes`` maps instrument_id to {date: close}."""

    def __init__(self, closes: dict | None = None, rate: Decimal = Decimal("30")):
        self.closes = closes or {}
        self.rate = rate

    def latest_close(self, instrument_id):
        series = self.closes.get(instrument_id)
        if not series:
            return None
        return series[max(series)]

    def close_on_date(self, instrument_id, day):
        series = self.closes.get(instrument_id) or {}
        eligible = [d for d in series if d <= day]
        return series[max(eligible)] if eligible else None

    def latest_rate(self, from_currency, to_currency):
        return self.rate if from_currency != to_currency else Decimal("1")

    def rate_on_date(self, from_currency, to_currency, day):
        return self.latest_rate(from_currency, to_currency)


@pytest.fixture(autouse=True)
def no_live_rates(monkeypatch):
    """Keep tests off the network: no live USD/TWD sources unless a test passes its own."""
    monkeypatch.setattr(quotes, "RATE_SOURCES", ())


@pytest.fixture
def db_engine():
    eng = build_engine("sqlite://")
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(db_engine):
    with Session(db_engine) as s:
        yield s


@pytest.fixture
def user(session):
    u = User(username="alice", hashed_password="x", totp_secret="JBSWY3DPEHPK3PXP")
    session.add(u)
    session.commit()
    session.refresh(u)
    return u


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def today():
    return date(2025, 3, 14)
