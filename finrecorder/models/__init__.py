"""Database models."""

from finrecorder.models.user import User
from finrecorder.models.preference import UserPreference
from finrecorder.models.instrument import Instrument
from finrecorder.models.price import PriceObservation
from finrecorder.models.exchange_rate import ExchangeRateObservation
from finrecorder.models.trade import Trade
from finrecorder.models.holding import Holding
from finrecorder.models.daily_snapshot import DailySnapshot
from finrecorder.models.job_log import JobLog

__all__ = [
    "User",
    "UserPreference",
    "Instrument",
    "PriceObservation",
    "ExchangeRateObservation",
    "Trade",
    "Holding",
    "DailySnapshot",
    "JobLog",
]
