"""
Portfolio Controller

Request/result boundary for shells and presentation collaborators. Every call
returns a Result: the value on success, or the PortfolioError that rejected
the request. Unexpected exceptions are not caught here.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, TypeVar

import pandas as pd

from holdings.errors import PortfolioError
from holdings.models import DailyPerformance, Result, Signal, TransactionRecord
from holdings.portfolio import Portfolio
from holdings.service import PortfolioService
from pricing.analysis import AnalysisEngine

logger = logging.getLogger(__name__)

T = TypeVar('T')


class PortfolioController:
    """Wraps PortfolioService and AnalysisEngine calls into Results"""

    def __init__(self, service: PortfolioService, engine: AnalysisEngine):
        self.service = service
        self.engine = engine

    def _call(self, action: str, fn: Callable[[], T]) -> Result[T]:
        try:
            return Result.success(fn())
        except PortfolioError as e:
            logger.warning(f"{action} failed: {e}")
            return Result.failure(e)

    # ========================================================================
    # Portfolio requests
    # ========================================================================

    def create_portfolio(self, name: str) -> Result[Portfolio]:
        return self._call('create_portfolio', lambda: self.service.create_portfolio(name))

    def list_portfolios(self) -> Result[List[str]]:
        return self._call('list_portfolios', self.service.list_portfolio_names)

    def buy(self, portfolio_name: str, symbol: str, quantity: int,
            on: date) -> Result[TransactionRecord]:
        return self._call('buy', lambda: self.service.buy(portfolio_name, symbol, quantity, on))

    def sell(self, portfolio_name: str, symbol: str, quantity: int,
             on: date) -> Result[TransactionRecord]:
        return self._call('sell', lambda: self.service.sell(portfolio_name, symbol, quantity, on))

    def portfolio_value(self, portfolio_name: str, on: date) -> Result[Decimal]:
        return self._call('portfolio_value', lambda: self.service.value_on(portfolio_name, on))

    def portfolio_investment(self, portfolio_name: str, on: date) -> Result[Decimal]:
        return self._call('portfolio_investment',
                          lambda: self.service.investment_on(portfolio_name, on))

    def portfolio_holdings(self, portfolio_name: str, on: date) -> Result[Dict[str, int]]:
        return self._call('portfolio_holdings',
                          lambda: self.service.get_portfolio(portfolio_name).holdings_on(on))

    def performance(self, portfolio_name: str, start: date, end: date,
                    points: int = 10) -> Result[pd.Series]:
        return self._call(
            'performance',
            lambda: self.service.get_portfolio(portfolio_name).performance_series(start, end, points)
        )

    # ========================================================================
    # Analysis requests
    # ========================================================================

    def moving_average(self, symbol: str, end: date, window: int) -> Result[Decimal]:
        return self._call('moving_average', lambda: self.engine.moving_average(symbol, end, window))

    def crossover_days(self, symbol: str, start: date, end: date) -> Result[List[date]]:
        return self._call('crossover_days',
                          lambda: list(self.engine.crossover_days(symbol, start, end)))

    def moving_crossover_days(self, symbol: str, start: date, end: date,
                              short_period: int, long_period: int) -> Result[List[Signal]]:
        return self._call(
            'moving_crossover_days',
            lambda: list(self.engine.moving_crossover_days(symbol, start, end,
                                                           short_period, long_period))
        )

    def daily_performance(self, symbol: str, on: date) -> Result[DailyPerformance]:
        return self._call('daily_performance', lambda: self.engine.daily_performance(symbol, on))
