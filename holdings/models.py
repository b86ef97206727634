"""
Common data models shared by the ledger, the price cache and the analysis engine
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Generic, Optional, TypeVar

from holdings.errors import PortfolioError

T = TypeVar('T')


class TransactionKind(str, Enum):
    BUY = 'BUY'
    SELL = 'SELL'


@dataclass(frozen=True)
class TransactionRecord:
    """Single buy or sell in a Security's ledger"""
    date: date
    kind: TransactionKind
    quantity: int
    unit_price: Decimal
    sequence: int = 0  # insertion order, breaks ties between same-date records

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.kind == TransactionKind.BUY else -self.quantity

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_record(self, symbol: str) -> dict:
        return {
            'symbol': symbol,
            'kind': self.kind.value,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'date': self.date.isoformat(),
        }


@dataclass(frozen=True)
class DailyBar:
    """Open/close quote for one trading day as returned by a price source"""
    open: Decimal
    close: Decimal


@dataclass(frozen=True)
class PriceEntry:
    """
    Cached price for (symbol, date).

    quote_date is the trading day the quote belongs to. It equals date for a
    real quote and points at the prior trading day for weekend/holiday keys.
    """
    symbol: str
    date: date
    close: Decimal
    open: Decimal
    quote_date: date

    @property
    def is_trading_day(self) -> bool:
        return self.quote_date == self.date

    def to_record(self) -> dict:
        return {
            'symbol': self.symbol,
            'date': self.date.isoformat(),
            'close': str(self.close),
            'open': str(self.open),
            'quote_date': self.quote_date.isoformat(),
        }


class SignalKind(str, Enum):
    BUY = 'BUY'
    SELL = 'SELL'


@dataclass(frozen=True)
class Signal:
    """Moving-average crossover signal on a trading day"""
    date: date
    kind: SignalKind


@dataclass(frozen=True)
class DailyPerformance:
    """Close on a date compared with the previous close"""
    symbol: str
    date: date
    close: Decimal
    previous_close: Decimal

    @property
    def change(self) -> Decimal:
        return self.close - self.previous_close

    @property
    def change_pct(self) -> Decimal:
        if self.previous_close == 0:
            return Decimal('0')
        return self.change / self.previous_close * 100

    @property
    def direction(self) -> str:
        if self.change > 0:
            return 'GAIN'
        elif self.change < 0:
            return 'LOSS'
        return 'UNCHANGED'


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Value-or-error result handed to collaborators instead of a nullable reference.

    Exactly one of value/error is meaningful: ok is True when error is None.
    """
    value: Optional[T] = None
    error: Optional[PortfolioError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        return str(self.error) if self.error is not None else ''

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value

    @classmethod
    def success(cls, value: T) -> 'Result[T]':
        return cls(value=value)

    @classmethod
    def failure(cls, error: PortfolioError) -> 'Result[T]':
        return cls(error=error)
