"""
Portfolio

Owns one Security per held symbol, validates buy/sell requests at the entry
point and aggregates value and investment as of any date.
"""

import logging
import threading
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, List, Tuple

import numpy as np
import pandas as pd

from holdings.errors import (
    DuplicateTransactionError,
    InsufficientQuantityError,
    NonWeekdayError,
    SymbolNotFoundError,
    ValidationError,
)
from holdings.models import Result, TransactionKind, TransactionRecord
from holdings.security import Security, investment_in, quantity_in, validate_transaction
from pricing.price_cache import PriceCache, normalize_symbol
from pricing.trading_days import is_weekend

logger = logging.getLogger(__name__)


class Portfolio:
    """
    Named set of Securities valued through an injected PriceCache.

    Mutations are serialized per portfolio. Reads work on one snapshot of every
    ledger taken under the lock, so a valuation sees a single consistent state
    while other threads keep buying and selling.
    """

    def __init__(self, name: str, price_cache: PriceCache,
                 today: Callable[[], date] = date.today):
        self.name = name
        self.price_cache = price_cache
        self._today = today
        self._securities: Dict[str, Security] = {}
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f"Portfolio({self.name!r}, symbols={self.list_symbols()})"

    # ========================================================================
    # Mutations
    # ========================================================================

    def add_stock(self, symbol: str, quantity: int, on: date) -> TransactionRecord:
        """
        Buy quantity shares of symbol at its close on the given date.

        A symbol already held gets the purchase appended to its existing ledger.

        Args:
            symbol: Stock symbol (case-insensitive)
            quantity: Positive number of shares
            on: Purchase date, a weekday not after today

        Returns:
            The recorded BUY transaction

        Raises:
            InvalidQuantityError, FutureDateError, NonWeekdayError,
            DuplicateTransactionError: Request rejected, nothing changed
            PriceUnavailableError: No close price for the date, nothing changed
        """
        symbol = self._validate_symbol(symbol)
        validate_transaction(quantity, on, self._today())
        if is_weekend(on):
            raise NonWeekdayError(f"Purchase date must be a weekday, got {on} ({on:%A})")
        self._check_duplicate(symbol, on)

        # Fetch outside the lock so slow providers do not block readers
        price = self.price_cache.price_on(symbol, on)

        with self._lock:
            self._check_duplicate(symbol, on)
            security = self._securities.get(symbol) or Security(symbol, today=self._today)
            record = security.buy(quantity, on, price)
            self._securities[symbol] = security

        logger.info(f"{self.name}: bought {quantity} {symbol} @ {price} on {on}")
        return record

    create_stock = add_stock

    def sell_stock(self, symbol: str, quantity: int, on: date) -> TransactionRecord:
        """
        Sell quantity shares of symbol at its close on the given date.

        Raises:
            SymbolNotFoundError: If the portfolio never held symbol
            InvalidQuantityError, FutureDateError: Request rejected
            InsufficientQuantityError: More shares than held on that date
            PriceUnavailableError: No close price for the date
        """
        symbol = self._validate_symbol(symbol)
        security = self._require_security(symbol)
        validate_transaction(quantity, on, self._today())

        held = security.quantity_at(on)
        if quantity > held:
            raise InsufficientQuantityError(
                f"Cannot sell {quantity} {symbol} on {on}: only {held} held"
            )

        # Security.sell re-checks under its own lock against the latest history
        price = self.price_cache.price_on(symbol, on)

        with self._lock:
            record = security.sell(quantity, on, price)

        logger.info(f"{self.name}: sold {quantity} {symbol} @ {price} on {on}")
        return record

    # ========================================================================
    # Valuation
    # ========================================================================

    def value_on(self, on: date) -> Decimal:
        """
        Market value on a date: sum of quantity x close over securities held then.

        Securities bought later or fully sold by that date contribute zero.
        """
        total = Decimal('0')
        for symbol, history in self._ledgers():
            quantity = quantity_in(history, on)
            if quantity > 0:
                total += self.price_cache.price_on(symbol, on) * quantity
        return total

    def investment_on(self, on: date) -> Decimal:
        """Net cash committed (buys minus sells) up to a date."""
        return sum((investment_in(history, on) for _, history in self._ledgers()), Decimal('0'))

    def list_symbols(self) -> List[str]:
        with self._lock:
            return sorted(self._securities)

    def stock_quantity(self, symbol: str, on: date) -> int:
        """Shares of symbol held on a date (0 if never held)."""
        security = self._securities.get(normalize_symbol(symbol))
        return security.quantity_at(on) if security is not None else 0

    def find_security(self, symbol: str) -> Result[Security]:
        security = self._securities.get(normalize_symbol(symbol))
        if security is None:
            return Result.failure(SymbolNotFoundError(f"{symbol} not held in portfolio {self.name}"))
        return Result.success(security)

    def holdings_on(self, on: date) -> Dict[str, int]:
        """Non-zero quantities per symbol on a date."""
        holdings = {}
        for symbol, history in self._ledgers():
            quantity = quantity_in(history, on)
            if quantity > 0:
                holdings[symbol] = quantity
        return holdings

    def composition_on(self, on: date) -> pd.DataFrame:
        """
        Per-symbol breakdown of the value on a date.

        Returns:
            DataFrame with columns symbol, quantity, price, value (Decimal values),
            one row per symbol held on that date, sorted by symbol
        """
        rows = []
        for symbol, quantity in sorted(self.holdings_on(on).items()):
            price = self.price_cache.price_on(symbol, on)
            rows.append({'symbol': symbol, 'quantity': quantity,
                         'price': price, 'value': price * quantity})
        return pd.DataFrame(rows, columns=['symbol', 'quantity', 'price', 'value'])

    def performance_series(self, start: date, end: date, points: int = 10) -> pd.Series:
        """
        Portfolio value sampled at evenly spaced dates in [start, end].

        Args:
            start: First sample date
            end: Last sample date
            points: Maximum number of samples (duplicates collapse on short ranges)

        Returns:
            Series of Decimal values indexed by date, ascending
        """
        if start > end:
            raise ValidationError(f"start date must be <= end date, got {start} > {end}")
        if points < 1:
            raise ValidationError(f"points must be positive, got {points}")

        ordinals = np.linspace(start.toordinal(), end.toordinal(), num=points)
        sample_dates = sorted({date.fromordinal(int(round(o))) for o in ordinals})

        logger.debug(f"{self.name}: sampling value on {len(sample_dates)} dates "
                     f"in [{start}, {end}]")
        values = [self.value_on(d) for d in sample_dates]
        return pd.Series(values, index=pd.Index(sample_dates, name='date'), name=self.name)

    # ========================================================================
    # Records
    # ========================================================================

    def to_record(self) -> dict:
        transactions = []
        for symbol, history in self._ledgers():
            transactions.extend(record.to_record(symbol) for record in history)
        transactions.sort(key=lambda t: (t['date'], t['symbol']))
        return {'name': self.name, 'transactions': transactions}

    @classmethod
    def from_record(cls, record: dict, price_cache: PriceCache,
                    today: Callable[[], date] = date.today) -> 'Portfolio':
        """
        Rebuild a portfolio from to_record() output.

        Transactions replay through the ledger, so an oversell in the record is
        rejected, but recorded prices are trusted and no price is fetched.

        Raises:
            ValueError: If the record is structurally invalid or a quantity is
                not a positive integer
            InsufficientQuantityError: If a recorded sell exceeds the holding
        """
        if 'name' not in record or 'transactions' not in record:
            raise ValueError(f"Portfolio record missing 'name' or 'transactions': {record}")

        portfolio = cls(record['name'], price_cache, today=today)
        try:
            transactions = sorted(record['transactions'], key=lambda t: t['date'])
            for txn in transactions:
                symbol = normalize_symbol(txn['symbol'])
                on = datetime.strptime(txn['date'], '%Y-%m-%d').date()
                price = Decimal(str(txn['unit_price']))
                kind = TransactionKind(txn.get('kind', TransactionKind.BUY.value))

                security = portfolio._securities.setdefault(symbol, Security(symbol, today=today))
                if kind == TransactionKind.BUY:
                    security.buy(txn['quantity'], on, price)
                else:
                    security.sell(txn['quantity'], on, price)
        except (KeyError, TypeError, ArithmeticError) as e:
            raise ValueError(f"Invalid transaction in portfolio {record['name']!r}: {e}") from e

        return portfolio

    # ========================================================================
    # Internals
    # ========================================================================

    def _ledgers(self) -> List[Tuple[str, Tuple[TransactionRecord, ...]]]:
        """(symbol, history) for every security, copied together under the lock."""
        with self._lock:
            return [(s.symbol, s.history) for s in self._securities.values()]

    def _require_security(self, symbol: str) -> Security:
        return self.find_security(symbol).unwrap()

    def _validate_symbol(self, symbol: str) -> str:
        if not symbol or not symbol.strip():
            raise ValidationError("Symbol cannot be empty")
        return normalize_symbol(symbol)

    def _check_duplicate(self, symbol: str, on: date) -> None:
        security = self._securities.get(symbol)
        if security is not None and security.has_transaction_on(on, TransactionKind.BUY):
            raise DuplicateTransactionError(
                f"Stock already exists in portfolio {self.name}: {symbol} on {on}"
            )
