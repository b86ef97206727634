"""
Price Cache

Memoizes daily quotes per (symbol, date) on top of a PriceSource.

Responsibilities:
- Return cached quotes without touching the source
- Fetch a short history window on a miss and memoize every day it covers
- Trading-day fallback: weekend and holiday keys carry the prior trading day's quote
- Single-flight fetches: at most one external fetch per uncached (symbol, date)
- Bounded fetch time: a fetch that outlives fetch_timeout surfaces PriceUnavailableError
- Export/import of entries so a collaborator can persist them between runs
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FetchTimeout
from contextlib import ExitStack, contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

import pandas as pd
from tqdm import tqdm

from holdings.errors import PriceUnavailableError, ValidationError
from holdings.models import DailyBar, PriceEntry, Result
from pricing.price_source import PriceSource
from pricing.trading_days import is_weekend, iter_weekdays, previous_weekday

logger = logging.getLogger(__name__)

Key = Tuple[str, date]


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


class PriceCache:
    """
    Lazily populated, never evicted cache of daily quotes.

    Entries are immutable once stored: a quote for a given (symbol, date) never
    changes within a run. Dates on or after today are answered from the latest
    available quote and remembered for the rest of the run only: they are kept
    apart from the stored entries and never exported, since today's bar may
    still be partial.
    """

    CSV_COLUMNS = ['symbol', 'date', 'close', 'open', 'quote_date']

    def __init__(self,
                 source: PriceSource,
                 fetch_timeout: Optional[float] = 10.0,
                 lookback_days: int = 10,
                 max_workers: int = 5,
                 today: Callable[[], date] = date.today):
        """
        Initialize the cache.

        Args:
            source: PriceSource used on cache misses
            fetch_timeout: Seconds to wait for a single fetch (None disables the bound)
            lookback_days: Calendar days fetched before a requested date so a
                weekend/holiday key can fall back to the prior trading day
            max_workers: Threads used for bounded fetches and warm_many()
            today: Clock returning the current date
        """
        if lookback_days < 7:
            raise ValueError(f"lookback_days must cover at least a week, got {lookback_days}")

        self.source = source
        self.fetch_timeout = fetch_timeout
        self.lookback_days = lookback_days
        self.max_workers = max_workers
        self._today = today

        self._entries: Dict[Key, PriceEntry] = {}
        self._latest: Dict[Key, PriceEntry] = {}
        self._state_lock = threading.Lock()
        self._key_locks: Dict[Key, threading.Lock] = {}
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix='price-fetch')
        self.fetch_count = 0

        logger.info(f"Initialized PriceCache: source={type(source).__name__}, "
                    f"fetch_timeout={fetch_timeout}, lookback_days={lookback_days}")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Key) -> bool:
        symbol, day = key
        return (normalize_symbol(symbol), day) in self._entries

    def __enter__(self) -> 'PriceCache':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Release fetch threads. Cached entries stay readable."""
        self._executor.shutdown(wait=False)

    def today(self) -> date:
        return self._today()

    # ========================================================================
    # Public lookups
    # ========================================================================

    def price_on(self, symbol: str, day: date) -> Decimal:
        """
        Close price for symbol on day, with trading-day fallback.

        A weekend or holiday returns the most recent prior trading day's close
        (Saturday/Sunday -> Friday); the entry is still stored under day.

        Raises:
            PriceUnavailableError: If the source has no data for the symbol or
                cannot be reached in time
        """
        return self.bar_on(symbol, day).close

    def previous_close(self, symbol: str, day: date) -> Decimal:
        """Close strictly before day, walking backward over weekends."""
        return self.price_on(symbol, previous_weekday(day))

    def bar_on(self, symbol: str, day: date) -> PriceEntry:
        """Full cached entry (open, close, quote_date) for symbol on day."""
        symbol = normalize_symbol(symbol)
        key = (symbol, day)

        entry = self._entries.get(key)
        if entry is not None:
            logger.debug(f"Cache hit: {symbol} {day}")
            return entry

        today = self._today()
        if day >= today:
            return self._latest_entry(symbol, day, today)

        with self._single_flight(key):
            # Another thread may have filled the key while we waited
            entry = self._entries.get(key)
            if entry is not None:
                return entry

            logger.debug(f"Cache miss: {symbol} {day}")
            start = day - timedelta(days=self.lookback_days)
            bars = self._fetch(symbol, start, day)
            self._store(symbol, start, day, bars, today)
            entry = self._entries.get(key)

        if entry is None:
            raise PriceUnavailableError(
                f"No quote for {symbol} on {day} or within {self.lookback_days} days before it"
            )
        if not entry.is_trading_day:
            logger.warning(f"{symbol}: {day} is not a trading day, "
                           f"using close from {entry.quote_date}")
        return entry

    def lookup(self, symbol: str, day: date) -> Result[Decimal]:
        """Cached close for (symbol, day) without fetching."""
        entry = self._entries.get((normalize_symbol(symbol), day))
        if entry is None:
            return Result.failure(PriceUnavailableError(f"{symbol} {day} is not cached"))
        return Result.success(entry.close)

    # ========================================================================
    # Range operations
    # ========================================================================

    def warm(self, symbol: str, start: date, end: date) -> int:
        """
        Memoize every completed day in [start, end] with a single range fetch.

        Args:
            symbol: Stock symbol
            start: First day (INCLUSIVE)
            end: Last day (INCLUSIVE); days on or after today are skipped

        Returns:
            Number of entries added

        Raises:
            ValidationError: If start > end
            PriceUnavailableError: If the fetch fails
        """
        if start > end:
            raise ValidationError(f"start date must be <= end date, got {start} > {end}")

        symbol = normalize_symbol(symbol)
        today = self._today()
        last = min(end, today - timedelta(days=1))
        if start > last:
            return 0

        missing = self._missing_keys(symbol, start, last)
        if not missing:
            logger.debug(f"{symbol}: [{start}, {last}] already cached")
            return 0

        # Locks taken in sorted key order; single-key callers never hold two locks
        with ExitStack() as stack:
            for key in missing:
                stack.enter_context(self._single_flight(key))

            missing = [key for key in missing if key not in self._entries]
            if not missing:
                return 0

            fetch_start = missing[0][1] - timedelta(days=self.lookback_days)
            fetch_end = missing[-1][1]
            bars = self._fetch(symbol, fetch_start, fetch_end)
            added = self._store(symbol, fetch_start, fetch_end, bars, today)

        logger.info(f"{symbol}: warmed [{start}, {last}], {added} new entries")
        return added

    def warm_many(self, symbols: Iterable[str], start: date, end: date,
                  show_progress: bool = False) -> Tuple[Set[str], Dict[str, int]]:
        """
        Warm several symbols in parallel.

        Returns:
            Tuple of (failed_symbols, added_per_symbol)
        """
        symbols = sorted({normalize_symbol(s) for s in symbols})
        logger.info(f"Warming {len(symbols)} symbols for [{start}, {end}] "
                    f"(max_workers={self.max_workers})")

        failed: Set[str] = set()
        added: Dict[str, int] = {}

        # Separate pool: warm() itself waits on self._executor
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_symbol = {
                executor.submit(self.warm, symbol, start, end): symbol
                for symbol in symbols
            }
            for future in tqdm(as_completed(future_to_symbol), total=len(future_to_symbol),
                               desc='Warming price cache', disable=not show_progress):
                symbol = future_to_symbol[future]
                try:
                    added[symbol] = future.result()
                except PriceUnavailableError as e:
                    logger.warning(f"Failed to warm {symbol}: {e}")
                    failed.add(symbol)

        logger.info(f"Warm complete: {len(added)} succeeded, {len(failed)} failed")
        return failed, added

    def trading_bars(self, symbol: str, start: date, end: date) -> List[PriceEntry]:
        """
        Real quotes for every trading day in [start, end], oldest first.

        Weekends, holidays and days on or after today are excluded.
        """
        symbol = normalize_symbol(symbol)
        self.warm(symbol, start, end)
        last = min(end, self._today() - timedelta(days=1))

        bars = []
        for day in iter_weekdays(start, last):
            entry = self._entries.get((symbol, day))
            if entry is not None and entry.is_trading_day:
                bars.append(entry)
        return bars

    def trading_bars_back(self, symbol: str, end: date, count: int) -> List[PriceEntry]:
        """
        The count most recent trading-day quotes ending at or before end, oldest first.

        Raises:
            PriceUnavailableError: If the source does not have count trading days of history
        """
        # ~5 trading days per 7 calendar days, plus slack for holidays
        span = count * 7 // 5 + self.lookback_days
        for _ in range(3):
            bars = self.trading_bars(symbol, end - timedelta(days=span), end)
            if len(bars) >= count:
                return bars[-count:]
            span *= 2

        raise PriceUnavailableError(
            f"{symbol}: only {len(bars)} trading days of history before {end}, need {count}"
        )

    # ========================================================================
    # Persistence hooks
    # ========================================================================

    def export_entries(self) -> List[dict]:
        """All entries as plain records, sorted by symbol then date."""
        with self._state_lock:
            entries = sorted(self._entries.values(), key=lambda e: (e.symbol, e.date))
        return [entry.to_record() for entry in entries]

    def import_entries(self, records: Iterable[dict]) -> int:
        """
        Add previously exported entries. Existing entries are never overwritten.

        Returns:
            Number of entries added

        Raises:
            ValueError: If a record is missing fields or holds unparsable values
        """
        parsed = []
        for record in records:
            missing_fields = set(self.CSV_COLUMNS) - set(record.keys())
            if missing_fields:
                raise ValueError(f"Price cache record missing required fields: {missing_fields}")
            try:
                entry = PriceEntry(
                    symbol=normalize_symbol(str(record['symbol'])),
                    date=datetime.strptime(str(record['date']), '%Y-%m-%d').date(),
                    close=Decimal(str(record['close'])),
                    open=Decimal(str(record['open'])),
                    quote_date=datetime.strptime(str(record['quote_date']), '%Y-%m-%d').date()
                )
            except (ValueError, InvalidOperation) as e:
                raise ValueError(f"Invalid price cache record {record}: {e}") from e
            if not (entry.close.is_finite() and entry.open.is_finite()):
                raise ValueError(f"Invalid price cache record {record}: prices must be finite")
            parsed.append(entry)

        added = 0
        with self._state_lock:
            for entry in parsed:
                key = (entry.symbol, entry.date)
                if key not in self._entries:
                    self._entries[key] = entry
                    added += 1

        logger.info(f"Imported {added} price cache entries ({len(parsed) - added} already present)")
        return added

    def save(self, path: str) -> None:
        """Write all entries to a CSV file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        frame = pd.DataFrame(self.export_entries(), columns=self.CSV_COLUMNS)
        frame.to_csv(path, index=False)
        logger.info(f"Saved {len(frame)} price cache entries to {path}")

    def load(self, path: str) -> int:
        """Import entries from a CSV file written by save(). Missing file loads nothing."""
        path = Path(path)
        if not path.exists():
            logger.debug(f"No price cache file at {path}, starting empty")
            return 0

        try:
            # Blank cells stay '' so they fail to parse instead of becoming NaN
            frame = pd.read_csv(path, dtype=str, keep_default_na=False)
        except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise ValueError(f"Corrupted price cache file {path}: {e}") from e

        return self.import_entries(frame.to_dict(orient='records'))

    # ========================================================================
    # Internals
    # ========================================================================

    @contextmanager
    def _single_flight(self, key: Key) -> Iterator[None]:
        """
        Hold the lock for key while it is fetched.

        The lock is forgotten on release whether or not the fetch succeeded.
        Threads already waiting on it still re-check the entries once they get
        it, and later callers either hit the cache or start a fresh lock.
        """
        with self._state_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()

        with lock:
            try:
                yield
            finally:
                with self._state_lock:
                    if self._key_locks.get(key) is lock:
                        del self._key_locks[key]

    def _missing_keys(self, symbol: str, start: date, end: date) -> List[Key]:
        keys = []
        day = start
        while day <= end:
            if (symbol, day) not in self._entries:
                keys.append((symbol, day))
            day += timedelta(days=1)
        return keys

    def _fetch(self, symbol: str, start: date, end: date) -> Dict[date, DailyBar]:
        """Call the source, bounded by fetch_timeout."""
        with self._state_lock:
            self.fetch_count += 1

        logger.debug(f"Fetching {symbol} [{start}, {end}] from {type(self.source).__name__}")
        if self.fetch_timeout is None:
            return self.source.fetch_range(symbol, start, end)

        future = self._executor.submit(self.source.fetch_range, symbol, start, end)
        try:
            return future.result(timeout=self.fetch_timeout)
        except FetchTimeout as e:
            future.cancel()
            error_msg = f"Timed out after {self.fetch_timeout}s fetching {symbol} [{start}, {end}]"
            logger.error(error_msg)
            raise PriceUnavailableError(error_msg) from e

    def _store(self, symbol: str, start: date, end: date,
               bars: Dict[date, DailyBar], today: date) -> int:
        """
        Memoize a fetched window.

        Quoted days become real entries. Every other completed day in the window
        gets the most recent earlier quote in the window; days with no earlier
        quote are left uncached.
        """
        new_entries = []
        latest: Optional[Tuple[date, DailyBar]] = None
        day = start
        while day <= end and day < today:
            bar = bars.get(day)
            if bar is not None:
                latest = (day, bar)
                new_entries.append(PriceEntry(symbol, day, bar.close, bar.open, day))
            elif latest is not None:
                quote_day, quote = latest
                if not is_weekend(day):
                    logger.debug(f"{symbol}: no quote on weekday {day}, treating as holiday")
                new_entries.append(PriceEntry(symbol, day, quote.close, quote.open, quote_day))
            day += timedelta(days=1)

        added = 0
        with self._state_lock:
            for entry in new_entries:
                key = (entry.symbol, entry.date)
                if key not in self._entries:
                    self._entries[key] = entry
                    added += 1
        return added

    def _latest_entry(self, symbol: str, day: date, today: date) -> PriceEntry:
        """Last known quote for a date on or after today, remembered for the rest of the run."""
        key = (symbol, day)
        entry = self._latest.get(key)
        if entry is not None:
            logger.debug(f"Cache hit (latest): {symbol} {day}")
            return entry

        with self._single_flight(key):
            entry = self._latest.get(key)
            if entry is not None:
                return entry

            start = today - timedelta(days=self.lookback_days)
            bars = self._fetch(symbol, start, today)
            self._store(symbol, start, today, bars, today)

            quoted = [d for d in bars if d <= min(day, today)]
            if not quoted:
                raise PriceUnavailableError(
                    f"No quote for {symbol} within {self.lookback_days} days before {today}"
                )
            quote_day = max(quoted)
            bar = bars[quote_day]
            entry = PriceEntry(symbol, day, bar.close, bar.open, quote_day)
            with self._state_lock:
                self._latest[key] = entry

        if quote_day != day:
            logger.warning(f"{symbol}: no settled quote for {day}, using last close from {quote_day}")
        return entry
