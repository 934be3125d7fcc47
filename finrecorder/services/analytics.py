"""Stateless performance analytics over a user's daily net-value series.

All functions are pure computation: the caller loads snapshots and holdings
and passes plain values in. Percentages are returned as percent (12.5 means
12.5%), daily returns come in as fractions.
"""

import math
import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date

import numpy as np

from finrecorder.config import settings
from finrecorder.utils.constants import CHART_COLORS, DAYS_PER_YEAR, TRADING_DAYS_PER_YEAR

# Largest x with exp(x) still a finite float, with headroom for the * 100
MAX_EXP = math.log(sys.float_info.max) - 5


# ---------------------------------------------------------------------------
# Inputs / results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NetValuePoint:
    date: date
    value: float
    daily_return: float | None = None  # fraction, None on the first day


@dataclass
class DayReturn:
    date: date
    value: float  # percent


@dataclass
class DrawdownPeriod:
    start: date
    end: date


@dataclass
class DailyStats:
    win_rate: float = 0.0
    best_day: DayReturn | None = None
    worst_day: DayReturn | None = None


@dataclass
class PerformanceMetrics:
    total_return: float = 0.0
    ytd_return: float = 0.0
    cagr: float | None = 0.0  # None when the annualized figure overflows
    volatility: float = 0.0
    sharpe_ratio: float | None = 0.0
    max_drawdown: float = 0.0
    max_drawdown_period: DrawdownPeriod | None = None
    trading_days: int = 0
    win_rate: float = 0.0
    best_day: DayReturn | None = None
    worst_day: DayReturn | None = None


@dataclass
class AllocationSlice:
    symbol: str
    name: str
    market: str
    value: float  # TWD
    percentage: float
    color: str


@dataclass
class AllocationInput:
    symbol: str
    name: str
    market: str
    value: float  # in the instrument's own currency


# ---------------------------------------------------------------------------
# Metric helpers
# ---------------------------------------------------------------------------

def calculate_cagr(start_value: float, end_value: float, years: float) -> float | None:
    """(end / start) ** (1 / years) - 1, as percent. 0 for a degenerate period.

    Worked in log space; a span of a few days can annualize past the float
    range, which yields ``None``.
    """
    if start_value <= 0 or years <= 0:
        return 0.0
    if end_value <= 0:
        return -100.0
    exponent = math.log(end_value / start_value) / years
    if exponent > MAX_EXP:
        return None
    return math.expm1(exponent) * 100


def calculate_volatility(daily_returns: Sequence[float]) -> float:
    """Annualized sample standard deviation of daily returns, as percent."""
    if len(daily_returns) < 2:
        return 0.0
    std = float(np.std(np.asarray(daily_returns, dtype=float), ddof=1))
    return std * math.sqrt(TRADING_DAYS_PER_YEAR) * 100


def calculate_sharpe_ratio(cagr: float | None, volatility: float, risk_free_rate: float | None = None) -> float | None:
    if cagr is None:
        return None
    if volatility == 0:
        return 0.0
    if risk_free_rate is None:
        risk_free_rate = settings.risk_free_rate
    return (cagr / 100 - risk_free_rate) / (volatility / 100)


def calculate_max_drawdown(points: Sequence[NetValuePoint]) -> tuple[float, DrawdownPeriod | None]:
    """Largest peak-to-trough decline, as percent, with the interval it spans.

    The running peak moves forward whenever a new high is reached; the first
    maximal decline found is kept.
    """
    if len(points) < 2:
        return 0.0, None

    max_drawdown = 0.0
    peak = points[0].value
    current_start = points[0].date
    start = end = points[0].date

    for point in points:
        if point.value > peak:
            peak = point.value
            current_start = point.date
        if peak <= 0:
            continue
        drawdown = (peak - point.value) / peak
        if drawdown > max_drawdown:
            max_drawdown = drawdown
            start = current_start
            end = point.date

    if max_drawdown <= 0:
        return 0.0, None
    return max_drawdown * 100, DrawdownPeriod(start=start, end=end)


def calculate_daily_stats(returns: Sequence[DayReturn]) -> DailyStats:
    """Win rate plus best and worst day; returns are in percent."""
    if not returns:
        return DailyStats()
    wins = sum(1 for r in returns if r.value > 0)
    ranked = sorted(returns, key=lambda r: r.value, reverse=True)
    return DailyStats(
        win_rate=wins / len(returns) * 100,
        best_day=ranked[0],
        worst_day=ranked[-1],
    )


def _percent_change(start: float, end: float) -> float:
    if start <= 0:
        return 0.0
    return (end - start) / start * 100


# ---------------------------------------------------------------------------
# Aggregate entry points
# ---------------------------------------------------------------------------

def compute_performance_metrics(points: Sequence[NetValuePoint], as_of: date | None = None) -> PerformanceMetrics:
    """All performance metrics for a date-ordered snapshot series.

    An empty series yields a zeroed result. ``as_of`` picks the YTD year
    (defaults to today).
    """
    if not points:
        return PerformanceMetrics()

    as_of = as_of or date.today()
    first, last = points[0], points[-1]

    day_returns = [
        DayReturn(date=p.date, value=p.daily_return * 100)
        for p in points
        if p.daily_return is not None
    ]

    ytd_start = next((p.value for p in points if p.date.year == as_of.year), first.value)

    years = (last.date - first.date).days / DAYS_PER_YEAR
    cagr = calculate_cagr(first.value, last.value, years)
    volatility = calculate_volatility([r.value / 100 for r in day_returns])
    max_drawdown, period = calculate_max_drawdown(points)
    stats = calculate_daily_stats(day_returns)

    return PerformanceMetrics(
        total_return=_percent_change(first.value, last.value),
        ytd_return=_percent_change(ytd_start, last.value),
        cagr=cagr,
        volatility=volatility,
        sharpe_ratio=calculate_sharpe_ratio(cagr, volatility),
        max_drawdown=max_drawdown,
        max_drawdown_period=period,
        trading_days=len(points),
        win_rate=stats.win_rate,
        best_day=stats.best_day,
        worst_day=stats.worst_day,
    )


def compute_allocation(items: Iterable[AllocationInput], usd_to_twd_rate: float) -> list[AllocationSlice]:
    """TWD-normalized allocation, colored by insertion order, largest first."""
    slices: list[AllocationSlice] = []
    for item in items:
        if item.value <= 0:
            continue
        value = item.value * usd_to_twd_rate if item.market == "US" else item.value
        slices.append(
            AllocationSlice(
                symbol=item.symbol,
                name=item.name,
                market=item.market,
                value=value,
                percentage=0.0,
                color=CHART_COLORS[len(slices) % len(CHART_COLORS)],
            )
        )

    total = sum(s.value for s in slices)
    for s in slices:
        s.percentage = s.value / total * 100 if total > 0 else 0.0
    return sorted(slices, key=lambda s: s.value, reverse=True)


def available_years(dates: Iterable[date]) -> list[int]:
    return sorted({d.year for d in dates}, reverse=True)


def filter_year(points: Iterable[NetValuePoint], year: int | None) -> list[NetValuePoint]:
    if year is None:
        return list(points)
    return [p for p in points if p.date.year == year]
