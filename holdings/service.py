"""
Portfolio Service

Owns the set of portfolios for a run. Enforces case-insensitive unique names
and routes buy/sell/valuation requests to the named portfolio.
"""

import logging
import threading
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List

from holdings.errors import (
    InvalidNameError,
    PortfolioExistsError,
    PortfolioNotFoundError,
)
from holdings.models import Result, TransactionRecord
from holdings.portfolio import Portfolio
from pricing.price_cache import PriceCache

logger = logging.getLogger(__name__)


class PortfolioService:
    """Registry of portfolios sharing one PriceCache"""

    def __init__(self, price_cache: PriceCache, today: Callable[[], date] = date.today):
        self.price_cache = price_cache
        self._today = today
        # keyed by casefolded name; Portfolio.name keeps the caller's spelling
        self._portfolios: Dict[str, Portfolio] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._portfolios)

    # ========================================================================
    # Portfolio registry
    # ========================================================================

    def create_portfolio(self, name: str) -> Portfolio:
        """
        Create an empty portfolio.

        Raises:
            InvalidNameError: If name is empty or blank
            PortfolioExistsError: If a portfolio with that name exists (case-insensitive)
        """
        name = self._validate_name(name)
        with self._lock:
            key = name.casefold()
            if key in self._portfolios:
                raise PortfolioExistsError(f"Portfolio already exists: {name}")
            portfolio = Portfolio(name, self.price_cache, today=self._today)
            self._portfolios[key] = portfolio

        logger.info(f"Created portfolio {name!r}")
        return portfolio

    def add_portfolio(self, portfolio: Portfolio) -> None:
        """Register an existing portfolio instance (e.g. one rebuilt from records)."""
        name = self._validate_name(portfolio.name)
        with self._lock:
            if name.casefold() in self._portfolios:
                raise PortfolioExistsError(f"A portfolio with the name '{name}' already exists.")
            self._portfolios[name.casefold()] = portfolio

    def find_portfolio(self, name: str) -> Result[Portfolio]:
        portfolio = self._portfolios.get((name or '').strip().casefold())
        if portfolio is None:
            return Result.failure(PortfolioNotFoundError(f"Portfolio not found: {name}"))
        return Result.success(portfolio)

    def get_portfolio(self, name: str) -> Portfolio:
        """
        Raises:
            PortfolioNotFoundError: If no portfolio has that name
        """
        return self.find_portfolio(name).unwrap()

    def portfolio_exists(self, name: str) -> bool:
        return self.find_portfolio(name).ok

    def delete_portfolio(self, name: str) -> None:
        with self._lock:
            portfolio = self._portfolios.pop((name or '').strip().casefold(), None)
        if portfolio is None:
            raise PortfolioNotFoundError(f"Portfolio not found: {name}")
        logger.info(f"Deleted portfolio {portfolio.name!r}")

    def list_portfolio_names(self) -> List[str]:
        with self._lock:
            return [p.name for p in self._portfolios.values()]

    # ========================================================================
    # Routed operations
    # ========================================================================

    def buy(self, portfolio_name: str, symbol: str, quantity: int, on: date) -> TransactionRecord:
        return self.get_portfolio(portfolio_name).add_stock(symbol, quantity, on)

    def sell(self, portfolio_name: str, symbol: str, quantity: int, on: date) -> TransactionRecord:
        return self.get_portfolio(portfolio_name).sell_stock(symbol, quantity, on)

    def value_on(self, portfolio_name: str, on: date) -> Decimal:
        return self.get_portfolio(portfolio_name).value_on(on)

    def investment_on(self, portfolio_name: str, on: date) -> Decimal:
        return self.get_portfolio(portfolio_name).investment_on(on)

    # ========================================================================
    # State export/import
    # ========================================================================

    def export_state(self) -> List[dict]:
        """Plain records for every portfolio: name and its transactions."""
        with self._lock:
            portfolios = list(self._portfolios.values())
        return [p.to_record() for p in portfolios]

    def import_state(self, records: List[dict], replace: bool = True) -> int:
        """
        Load portfolios from export_state() records.

        All records are rebuilt before anything is registered, so a bad record
        leaves the service unchanged.

        Args:
            records: Portfolio records
            replace: Drop existing portfolios first (default: True)

        Returns:
            Number of portfolios loaded

        Raises:
            ValueError: If a record is invalid
            InsufficientQuantityError: If a record sells more shares than it holds
            PortfolioExistsError: If names collide
        """
        rebuilt = [Portfolio.from_record(r, self.price_cache, today=self._today) for r in records]

        staged: Dict[str, Portfolio] = {}
        for portfolio in rebuilt:
            key = self._validate_name(portfolio.name).casefold()
            if key in staged:
                raise PortfolioExistsError(f"Duplicate portfolio name in state: {portfolio.name}")
            staged[key] = portfolio

        with self._lock:
            if not replace:
                collisions = set(staged) & set(self._portfolios)
                if collisions:
                    raise PortfolioExistsError(f"Portfolios already exist: {sorted(collisions)}")
                staged = {**self._portfolios, **staged}
            self._portfolios = staged

        logger.info(f"Imported {len(rebuilt)} portfolios")
        return len(rebuilt)

    @staticmethod
    def _validate_name(name: str) -> str:
        if name is None or not name.strip():
            raise InvalidNameError("Portfolio name cannot be empty")
        return name.strip()
