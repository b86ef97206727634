"""
Analysis Engine

Time-series analytics computed from PriceCache quotes:
- N-day moving average over trading days
- Crossover days (close above open)
- Dual moving-average crossovers classified as BUY/SELL signals
- Day-over-day gain/loss inspection

Sequences returned here are lazy and restartable: nothing is fetched until
they are iterated, and every iteration recomputes from the (memoized) cache.
Period validation happens eagerly when the sequence is requested; price
failures surface while iterating.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Iterator, List

import pandas as pd

from holdings.errors import InvalidPeriodError, ValidationError
from holdings.models import DailyPerformance, PriceEntry, Signal, SignalKind
from pricing.price_cache import PriceCache, normalize_symbol
from pricing.trading_days import previous_weekday

logger = logging.getLogger(__name__)


def _validate_range(start: date, end: date) -> None:
    if start > end:
        raise ValidationError(f"start date must be <= end date, got {start} > {end}")


def _validate_period(period, name: str) -> None:
    if isinstance(period, bool) or not isinstance(period, int) or period < 1:
        raise InvalidPeriodError(f"{name} must be a positive integer, got {period!r}")


def _sign(value: Decimal) -> int:
    return (value > 0) - (value < 0)


class CrossoverDays:
    """Trading days in [start, end] whose close exceeds their open."""

    def __init__(self, price_cache: PriceCache, symbol: str, start: date, end: date):
        self.price_cache = price_cache
        self.symbol = symbol
        self.start = start
        self.end = end

    def __iter__(self) -> Iterator[date]:
        for bar in self.price_cache.trading_bars(self.symbol, self.start, self.end):
            if bar.close > bar.open:
                yield bar.date

    def __repr__(self) -> str:
        return f"CrossoverDays({self.symbol!r}, {self.start}, {self.end})"


class MovingCrossoverSignals:
    """
    BUY/SELL signals where the short moving average crosses the long one.

    BUY on a trading day where short MA > long MA and that did not hold on the
    previous trading day; SELL on the symmetric downward cross. Days without a
    change of relation emit nothing.
    """

    def __init__(self, price_cache: PriceCache, symbol: str, start: date, end: date,
                 short_period: int, long_period: int):
        self.price_cache = price_cache
        self.symbol = symbol
        self.start = start
        self.end = end
        self.short_period = short_period
        self.long_period = long_period

    def __repr__(self) -> str:
        return (f"MovingCrossoverSignals({self.symbol!r}, {self.start}, {self.end}, "
                f"short={self.short_period}, long={self.long_period})")

    def __iter__(self) -> Iterator[Signal]:
        in_range = self.price_cache.trading_bars(self.symbol, self.start, self.end)
        if not in_range:
            return

        # long_period quotes ending the trading day before the range, so the
        # first day in range has both a full window and a previous relation
        prior = self.price_cache.trading_bars_back(
            self.symbol, previous_weekday(in_range[0].date), self.long_period
        )
        closes = [bar.close for bar in prior] + [bar.close for bar in in_range]
        first = len(prior)
        short, long = self.short_period, self.long_period

        short_sum = sum(closes[first - short:first], Decimal('0'))
        long_sum = sum(closes[first - long:first], Decimal('0'))
        # compare sums cross-multiplied to avoid dividing
        previous = _sign(short_sum * long - long_sum * short)

        for offset, bar in enumerate(in_range):
            i = first + offset
            short_sum += closes[i] - closes[i - short]
            long_sum += closes[i] - closes[i - long]
            relation = _sign(short_sum * long - long_sum * short)

            if relation > 0 and previous <= 0:
                yield Signal(bar.date, SignalKind.BUY)
            elif relation < 0 and previous >= 0:
                yield Signal(bar.date, SignalKind.SELL)
            previous = relation


class AnalysisEngine:
    """Moving-average and crossover analytics over an injected PriceCache"""

    def __init__(self, price_cache: PriceCache):
        self.price_cache = price_cache

    def moving_average(self, symbol: str, end_date: date, window: int) -> Decimal:
        """
        Average close over the window most recent trading days ending at or before end_date.

        Weekends and holidays are skipped when selecting the window rather than
        counted as zero-weight days.

        Raises:
            InvalidPeriodError: If window is not a positive integer
            PriceUnavailableError: If fewer than window trading days of history exist
        """
        _validate_period(window, 'window')
        bars = self.price_cache.trading_bars_back(normalize_symbol(symbol), end_date, window)
        average = sum((bar.close for bar in bars), Decimal('0')) / Decimal(window)
        logger.debug(f"{symbol}: {window}-day moving average to {end_date} = {average}")
        return average

    def crossover_days(self, symbol: str, start_date: date, end_date: date) -> CrossoverDays:
        """
        Trading days in [start_date, end_date] where close > open.

        Raises:
            ValidationError: If start_date > end_date
        """
        _validate_range(start_date, end_date)
        return CrossoverDays(self.price_cache, normalize_symbol(symbol), start_date, end_date)

    def moving_crossover_days(self, symbol: str, start_date: date, end_date: date,
                              short_period: int, long_period: int) -> MovingCrossoverSignals:
        """
        Dual moving-average crossover signals in [start_date, end_date].

        Raises:
            ValidationError: If start_date > end_date
            InvalidPeriodError: Unless 0 < short_period < long_period
        """
        _validate_range(start_date, end_date)
        _validate_period(short_period, 'short_period')
        _validate_period(long_period, 'long_period')
        if short_period >= long_period:
            raise InvalidPeriodError(
                f"short_period must be less than long_period, got {short_period} >= {long_period}"
            )
        return MovingCrossoverSignals(self.price_cache, normalize_symbol(symbol),
                                      start_date, end_date, short_period, long_period)

    def daily_performance(self, symbol: str, on: date) -> DailyPerformance:
        """
        Close on a date compared with the previous trading day's close.

        A weekend/holiday date is inspected as its fallback trading day.
        """
        symbol = normalize_symbol(symbol)
        entry = self.price_cache.bar_on(symbol, on)
        previous = self.price_cache.previous_close(symbol, entry.quote_date)
        return DailyPerformance(symbol=symbol, date=entry.quote_date,
                                close=entry.close, previous_close=previous)

    def price_frame(self, symbol: str, start_date: date, end_date: date) -> pd.DataFrame:
        """
        Trading-day quotes in [start_date, end_date].

        Returns:
            DataFrame indexed by date with Decimal 'open' and 'close' columns
        """
        _validate_range(start_date, end_date)
        bars: List[PriceEntry] = self.price_cache.trading_bars(normalize_symbol(symbol),
                                                               start_date, end_date)
        frame = pd.DataFrame(
            {'open': [b.open for b in bars], 'close': [b.close for b in bars]},
            index=pd.Index([b.date for b in bars], name='date')
        )
        return frame
