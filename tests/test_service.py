"""
Tests for Portfolio Service
"""

import logging
from datetime import date

import pytest

from fakes import fixed_today
from holdings.errors import (
    InsufficientQuantityError,
    InvalidNameError,
    PortfolioExistsError,
    PortfolioNotFoundError,
)
from holdings.service import PortfolioService

# Configure logging for tests
logging.basicConfig(
    level=logging.ERROR,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


# ============================================================================
# PHASE 1: Registry Tests
# ============================================================================

class TestRegistry:
    """Test creating, finding and deleting portfolios"""

    def test_create_portfolio(self, service):
        """Should create an empty portfolio under the given name"""
        portfolio = service.create_portfolio('Growth')

        assert portfolio.name == 'Growth'
        assert portfolio.list_symbols() == []
        assert service.list_portfolio_names() == ['Growth']

    def test_name_is_trimmed(self, service):
        """Should strip surrounding whitespace"""
        assert service.create_portfolio('  Income ').name == 'Income'

    @pytest.mark.parametrize('name', ['', '   ', None])
    def test_empty_name_rejected(self, service, name):
        """Should reject empty or blank names without side effects"""
        with pytest.raises(InvalidNameError):
            service.create_portfolio(name)

        assert len(service) == 0

    @pytest.mark.parametrize('duplicate', ['Growth', 'growth', 'GROWTH', ' gRoWtH '])
    def test_duplicate_name_rejected(self, service, duplicate):
        """Should reject names that match case-insensitively"""
        original = service.create_portfolio('Growth')

        with pytest.raises(PortfolioExistsError):
            service.create_portfolio(duplicate)

        assert service.list_portfolio_names() == ['Growth']
        assert service.get_portfolio('Growth') is original

    def test_find_is_case_insensitive(self, service):
        """Should find a portfolio by any casing"""
        portfolio = service.create_portfolio('Growth')

        result = service.find_portfolio('GROWTH')

        assert result.ok
        assert result.value is portfolio
        assert service.portfolio_exists('growth')

    def test_find_missing(self, service):
        """Should return an error result for an unknown name"""
        result = service.find_portfolio('Missing')

        assert not result.ok
        assert isinstance(result.error, PortfolioNotFoundError)
        assert 'Missing' in result.message
        with pytest.raises(PortfolioNotFoundError):
            result.unwrap()

    def test_get_missing_raises(self, service):
        """Should raise PortfolioNotFoundError"""
        with pytest.raises(PortfolioNotFoundError):
            service.get_portfolio('Missing')

    def test_delete(self, service):
        """Should remove the portfolio and free its name"""
        service.create_portfolio('Growth')
        service.delete_portfolio('growth')

        assert service.list_portfolio_names() == []
        service.create_portfolio('GROWTH')

    def test_delete_missing(self, service):
        """Should raise for an unknown name"""
        with pytest.raises(PortfolioNotFoundError):
            service.delete_portfolio('Missing')


# ============================================================================
# PHASE 2: Routed Operation Tests
# ============================================================================

class TestRoutedOperations:
    """Test buy/sell/value by portfolio name"""

    def test_buy_sell_value(self, service, source):
        """Should route requests to the named portfolio"""
        service.create_portfolio('Growth')
        service.buy('growth', 'AAPL', 10, date(2024, 2, 6))
        service.sell('GROWTH', 'AAPL', 4, date(2024, 2, 9))

        day = date(2024, 2, 9)
        assert service.value_on('Growth', day) == source.close('AAPL', day) * 6
        assert service.investment_on('Growth', day) == (
            source.close('AAPL', date(2024, 2, 6)) * 10 - source.close('AAPL', day) * 4
        )

    def test_buy_unknown_portfolio(self, service):
        """Should raise PortfolioNotFoundError"""
        with pytest.raises(PortfolioNotFoundError):
            service.buy('Missing', 'AAPL', 1, date(2024, 2, 6))


# ============================================================================
# PHASE 3: State Tests
# ============================================================================

class TestState:
    """Test export_state / import_state"""

    def test_round_trip(self, service, cache):
        """Should rebuild every portfolio from exported records"""
        service.create_portfolio('Growth')
        service.create_portfolio('Income')
        service.buy('Growth', 'AAPL', 10, date(2024, 2, 6))
        service.buy('Income', 'MSFT', 3, date(2024, 2, 7))
        state = service.export_state()

        restored = PortfolioService(cache, today=fixed_today)
        assert restored.import_state(state) == 2

        assert sorted(restored.list_portfolio_names()) == ['Growth', 'Income']
        assert restored.get_portfolio('income').stock_quantity('MSFT', date(2024, 2, 7)) == 3
        assert restored.export_state() == state

    def test_import_replaces_by_default(self, service):
        """Should drop existing portfolios when replacing"""
        service.create_portfolio('Old')

        service.import_state([{'name': 'New', 'transactions': []}])

        assert service.list_portfolio_names() == ['New']

    def test_import_merge_collision(self, service):
        """Should reject colliding names when merging and keep the existing state"""
        service.create_portfolio('Growth')

        with pytest.raises(PortfolioExistsError):
            service.import_state([{'name': 'GROWTH', 'transactions': []}], replace=False)

        assert service.list_portfolio_names() == ['Growth']

    def test_import_merge(self, service):
        """Should add new portfolios alongside existing ones"""
        service.create_portfolio('Growth')

        service.import_state([{'name': 'Income', 'transactions': []}], replace=False)

        assert sorted(service.list_portfolio_names()) == ['Growth', 'Income']

    def test_import_duplicate_names_is_atomic(self, service):
        """Should leave the service unchanged when the records collide"""
        service.create_portfolio('Growth')

        with pytest.raises(PortfolioExistsError):
            service.import_state([
                {'name': 'Income', 'transactions': []},
                {'name': 'income', 'transactions': []},
            ])

        assert service.list_portfolio_names() == ['Growth']

    def test_import_blank_name(self, service):
        """Should reject records without a usable name"""
        with pytest.raises(InvalidNameError):
            service.import_state([{'name': ' ', 'transactions': []}])

    def test_import_oversell_is_atomic(self, service):
        """Should raise InsufficientQuantityError and keep the existing state"""
        service.create_portfolio('Growth')

        with pytest.raises(InsufficientQuantityError):
            service.import_state([
                {'name': 'Income', 'transactions': []},
                {'name': 'Trading', 'transactions': [
                    {'symbol': 'AAPL', 'kind': 'BUY', 'quantity': 1,
                     'unit_price': '100', 'date': '2024-02-06'},
                    {'symbol': 'AAPL', 'kind': 'SELL', 'quantity': 2,
                     'unit_price': '101', 'date': '2024-02-07'},
                ]},
            ])

        assert service.list_portfolio_names() == ['Growth']
