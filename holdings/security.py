"""
Security Ledger

Append-only transaction history for one symbol inside one portfolio, with
quantity and investment reconstruction as of any date.
"""

import logging
import threading
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Tuple

from holdings.errors import (
    FutureDateError,
    InsufficientQuantityError,
    InvalidQuantityError,
)
from holdings.models import TransactionKind, TransactionRecord

logger = logging.getLogger(__name__)


def validate_transaction(quantity: int, on: date, today: date) -> None:
    """
    Checks shared by every buy and sell.

    Raises:
        InvalidQuantityError: If quantity is not a positive integer
        FutureDateError: If on is after today
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantityError(f"Quantity must be a positive integer, got {quantity!r}")
    if on > today:
        raise FutureDateError(f"Date cannot be in the future: {on}")


def quantity_in(history: Iterable[TransactionRecord], on: date) -> int:
    """Signed sum of quantities over records dated on or before on."""
    return sum(r.signed_quantity for r in history if r.date <= on)


def investment_in(history: Iterable[TransactionRecord], on: date) -> Decimal:
    """
    Net cash committed up to on: BUY amounts minus SELL amounts.

    This is a cash-flow net, not a realized-gain calculation.
    """
    total = Decimal('0')
    for record in history:
        if record.date > on:
            continue
        if record.kind == TransactionKind.BUY:
            total += record.amount
        else:
            total -= record.amount
    return total


class Security:
    """
    A single symbol's holdings and transaction history within one portfolio.

    Invariant: quantity_at(d) >= 0 for every date d. A sell that would break it
    (on its own date or on any later date) is rejected before anything is appended.
    """

    def __init__(self, symbol: str, today: Callable[[], date] = date.today):
        self.symbol = symbol
        self._today = today
        self._history: List[TransactionRecord] = []
        self._lock = threading.Lock()
        self._sequence = 0

    def __repr__(self) -> str:
        return f"Security({self.symbol!r}, transactions={len(self._history)})"

    @property
    def history(self) -> Tuple[TransactionRecord, ...]:
        """Ordered copy of the ledger (by date, then insertion order)."""
        with self._lock:
            return tuple(self._history)

    @property
    def first_date(self) -> Optional[date]:
        history = self.history
        return history[0].date if history else None

    # ========================================================================
    # Mutations
    # ========================================================================

    def buy(self, quantity: int, on: date, price: Decimal) -> TransactionRecord:
        """
        Append a BUY record.

        Raises:
            InvalidQuantityError: If quantity is not a positive integer
            FutureDateError: If on is after today
        """
        self._validate(quantity, on)
        with self._lock:
            record = self._append(TransactionKind.BUY, quantity, on, price)
        logger.debug(f"{self.symbol}: BUY {quantity} @ {price} on {on}")
        return record

    def sell(self, quantity: int, on: date, price: Decimal) -> TransactionRecord:
        """
        Append a SELL record.

        Raises:
            InvalidQuantityError: If quantity is not a positive integer
            FutureDateError: If on is after today
            InsufficientQuantityError: If quantity exceeds the holding on that date,
                or would leave a later date negative
        """
        self._validate(quantity, on)
        with self._lock:
            held = quantity_in(self._history, on)
            if quantity > held:
                raise InsufficientQuantityError(
                    f"Cannot sell {quantity} {self.symbol} on {on}: only {held} held"
                )

            # Later sells were validated against the old history; re-check them
            running = held - quantity
            for record in self._history:
                if record.date > on:
                    running += record.signed_quantity
                    if running < 0:
                        raise InsufficientQuantityError(
                            f"Cannot sell {quantity} {self.symbol} on {on}: "
                            f"holding would go negative on {record.date}"
                        )

            record = self._append(TransactionKind.SELL, quantity, on, price)
        logger.debug(f"{self.symbol}: SELL {quantity} @ {price} on {on}")
        return record

    # ========================================================================
    # As-of reconstruction
    # ========================================================================

    def quantity_at(self, on: date) -> int:
        return quantity_in(self.history, on)

    def investment_at(self, on: date) -> Decimal:
        return investment_in(self.history, on)

    def value_at(self, on: date, price_cache) -> Decimal:
        """quantity_at(on) x close price on that date (zero when nothing is held)."""
        quantity = self.quantity_at(on)
        if quantity == 0:
            return Decimal('0')
        return price_cache.price_on(self.symbol, on) * quantity

    def has_transaction_on(self, on: date, kind: TransactionKind) -> bool:
        return any(r.date == on and r.kind == kind for r in self.history)

    def to_records(self) -> List[dict]:
        return [record.to_record(self.symbol) for record in self.history]

    # ========================================================================
    # Internals
    # ========================================================================

    def _validate(self, quantity: int, on: date) -> None:
        validate_transaction(quantity, on, self._today())

    def _append(self, kind: TransactionKind, quantity: int, on: date,
                price: Decimal) -> TransactionRecord:
        self._sequence += 1
        record = TransactionRecord(date=on, kind=kind, quantity=quantity,
                                   unit_price=Decimal(str(price)), sequence=self._sequence)
        self._history.append(record)
        self._history.sort(key=lambda r: (r.date, r.sequence))
        return record
