"""
Price Source Abstraction

Provides the abstract interface the price cache fetches through, plus the
yfinance and Alpha Vantage implementations. A source answers one question:
which daily open/close quotes exist for a symbol in an inclusive date range.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional

import pandas as pd
import requests
import yfinance as yf

from holdings.errors import PriceUnavailableError
from holdings.models import DailyBar

logger = logging.getLogger(__name__)


def to_decimal(value) -> Decimal:
    """Convert a float/numpy/string quote to Decimal without binary noise."""
    return Decimal(str(float(value)))


class PriceSource(ABC):
    """Abstract base class for price sources"""

    @abstractmethod
    def fetch_range(self, symbol: str, start: date, end: date) -> Dict[date, DailyBar]:
        """
        Fetch daily quotes for a single symbol.

        Args:
            symbol: Stock symbol
            start: First day of the range (INCLUSIVE)
            end: Last day of the range (INCLUSIVE)

        Returns:
            Dictionary mapping each quoted trading day to its DailyBar.
            Days without a quote (weekends, holidays) are simply absent.

        Raises:
            PriceUnavailableError: If the symbol is unknown to the provider
                or the provider cannot be reached
        """
        pass

    def fetch(self, symbol: str, day: date) -> Optional[Decimal]:
        """Close on day, or None when the provider has no quote for that day."""
        bar = self.fetch_range(symbol, day, day).get(day)
        return bar.close if bar is not None else None


class YFinanceSource(PriceSource):
    """yfinance implementation (Yahoo Finance daily history)"""

    def __init__(self, timeout: int = 10, auto_adjust: bool = False):
        """
        Initialize yfinance source.

        Args:
            timeout: Per-request timeout in seconds handed to yfinance
            auto_adjust: Whether to adjust quotes for splits/dividends (default: False,
                so cached closes match the prices transactions were recorded at)
        """
        self.timeout = timeout
        self.auto_adjust = auto_adjust

        logger.info(f"Initialized YFinanceSource: timeout={timeout}, auto_adjust={auto_adjust}")

    def fetch_range(self, symbol: str, start: date, end: date) -> Dict[date, DailyBar]:
        try:
            # yfinance uses an exclusive end date
            end_exclusive = end + timedelta(days=1)

            logger.debug(f"Downloading {symbol} from {start} to {end} (inclusive)")

            ticker = yf.Ticker(symbol)
            prices = ticker.history(
                start=start.isoformat(),
                end=end_exclusive.isoformat(),
                interval='1d',
                auto_adjust=self.auto_adjust,
                timeout=self.timeout
            )
        except Exception as e:
            error_msg = f"Failed to download {symbol}: {str(e)}"
            logger.error(error_msg)
            raise PriceUnavailableError(error_msg) from e

        if prices is None or prices.empty:
            error_msg = f"No price data returned for {symbol} in [{start}, {end}]"
            logger.error(error_msg)
            raise PriceUnavailableError(error_msg)

        missing_columns = [col for col in ('Open', 'Close') if col not in prices.columns]
        if missing_columns:
            error_msg = f"{symbol} missing required columns: {missing_columns}"
            logger.error(error_msg)
            raise PriceUnavailableError(error_msg)

        bars: Dict[date, DailyBar] = {}
        for ts, row in prices.iterrows():
            if pd.isna(row['Close']) or pd.isna(row['Open']):
                continue
            day = ts.date()
            if start <= day <= end:
                bars[day] = DailyBar(open=to_decimal(row['Open']), close=to_decimal(row['Close']))

        logger.debug(f"Successfully downloaded {symbol}: {len(bars)} quoted days")
        return bars


class AlphaVantageSource(PriceSource):
    """Alpha Vantage TIME_SERIES_DAILY implementation"""

    BASE_URL = "https://www.alphavantage.co/query"
    # compact output covers the latest 100 quotes, roughly 140 calendar days
    COMPACT_WINDOW_DAYS = 140

    def __init__(self, api_key: str, timeout: int = 30):
        """
        Initialize the Alpha Vantage source.

        Args:
            api_key: Alpha Vantage API key
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ValueError("Alpha Vantage API key is required")

        self.api_key = api_key
        self.timeout = timeout
        logger.info("Initialized AlphaVantageSource")

    def _output_size(self, start: date) -> str:
        if (date.today() - start).days <= self.COMPACT_WINDOW_DAYS:
            return 'compact'
        return 'full'

    def fetch_range(self, symbol: str, start: date, end: date) -> Dict[date, DailyBar]:
        params = {
            'function': 'TIME_SERIES_DAILY',
            'symbol': symbol,
            'outputsize': self._output_size(start),
            'apikey': self.api_key
        }

        try:
            response = requests.get(self.BASE_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            error_msg = f"Failed to fetch {symbol} from Alpha Vantage: {str(e)}"
            logger.error(error_msg)
            raise PriceUnavailableError(error_msg) from e

        # Alpha Vantage reports errors and throttling inside a 200 response
        for key in ('Error Message', 'Note', 'Information'):
            if key in data:
                error_msg = f"Alpha Vantage error for {symbol}: {data[key]}"
                logger.error(error_msg)
                raise PriceUnavailableError(error_msg)

        series = data.get('Time Series (Daily)')
        if not series:
            error_msg = f"No 'Time Series (Daily)' field in Alpha Vantage response for {symbol}"
            logger.error(error_msg)
            raise PriceUnavailableError(error_msg)

        bars: Dict[date, DailyBar] = {}
        try:
            for day_str, quote in series.items():
                day = datetime.strptime(day_str, '%Y-%m-%d').date()
                if start <= day <= end:
                    bars[day] = DailyBar(open=Decimal(quote['1. open']),
                                         close=Decimal(quote['4. close']))
        except (KeyError, ValueError, ArithmeticError) as e:
            error_msg = f"Malformed Alpha Vantage quote for {symbol}: {e}"
            logger.error(error_msg)
            raise PriceUnavailableError(error_msg) from e

        logger.debug(f"Alpha Vantage returned {len(bars)} quoted days for {symbol} in [{start}, {end}]")
        return bars
