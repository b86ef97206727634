"""
Tests for Portfolio

Covers buying and selling through the price cache, valuation as of a date
(including weekend fallback), snapshots for presentation, record round-trips
and concurrent mutations.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from decimal import Decimal

import pandas as pd
import pytest

from fakes import TODAY, fixed_today, trading_days
from holdings.errors import (
    DuplicateTransactionError,
    FutureDateError,
    InsufficientQuantityError,
    InvalidQuantityError,
    NonWeekdayError,
    PriceUnavailableError,
    SymbolNotFoundError,
    ValidationError,
)
from holdings.portfolio import Portfolio

# Configure logging for tests
logging.basicConfig(
    level=logging.ERROR,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


# ============================================================================
# PHASE 1: Buy Tests
# ============================================================================

class TestAddStock:
    """Test add_stock validation and recording"""

    def test_buy_at_close(self, portfolio, source):
        """Should record the purchase at the close on that date"""
        record = portfolio.add_stock('AAPL', 10, date(2024, 2, 6))

        assert record.unit_price == source.close('AAPL', date(2024, 2, 6))
        assert portfolio.list_symbols() == ['AAPL']
        assert portfolio.stock_quantity('AAPL', date(2024, 2, 6)) == 10

    def test_symbol_normalized(self, portfolio):
        """Should store symbols in upper case"""
        portfolio.add_stock(' aapl', 10, date(2024, 2, 6))

        assert portfolio.list_symbols() == ['AAPL']
        assert portfolio.stock_quantity('Aapl', date(2024, 2, 6)) == 10

    def test_create_stock_alias(self, portfolio):
        """Should accept create_stock as an alias"""
        portfolio.create_stock('MSFT', 1, date(2024, 2, 6))

        assert portfolio.list_symbols() == ['MSFT']

    def test_distinct_dates_accumulate(self, portfolio):
        """Should append later purchases to the same Security"""
        portfolio.add_stock('AAPL', 10, date(2024, 2, 6))
        portfolio.add_stock('AAPL', 5, date(2024, 2, 8))

        security = portfolio.find_security('AAPL').unwrap()
        assert len(security.history) == 2
        assert portfolio.stock_quantity('AAPL', date(2024, 2, 8)) == 15

    def test_duplicate_date_rejected(self, portfolio):
        """Should reject a second buy of the same symbol on the same date"""
        portfolio.add_stock('AAPL', 10, date(2024, 2, 6))

        with pytest.raises(DuplicateTransactionError):
            portfolio.add_stock('aapl', 5, date(2024, 2, 6))

        assert portfolio.stock_quantity('AAPL', date(2024, 2, 6)) == 10

    def test_weekend_rejected(self, portfolio, source):
        """Should reject a Sunday purchase before fetching a price"""
        with pytest.raises(NonWeekdayError, match="Sunday"):
            portfolio.add_stock('MSFT', 5, date(2024, 2, 11))

        assert portfolio.list_symbols() == []
        assert source.calls == []

    @pytest.mark.parametrize('quantity', [0, -1, 1.5])
    def test_invalid_quantity(self, portfolio, quantity):
        """Should reject non-positive and fractional quantities"""
        with pytest.raises(InvalidQuantityError):
            portfolio.add_stock('AAPL', quantity, date(2024, 2, 6))

        assert portfolio.list_symbols() == []

    def test_future_date(self, portfolio):
        """Should reject a purchase after today"""
        with pytest.raises(FutureDateError):
            portfolio.add_stock('AAPL', 1, TODAY + timedelta(days=3))

    def test_empty_symbol(self, portfolio):
        """Should reject a blank symbol"""
        with pytest.raises(ValidationError):
            portfolio.add_stock('  ', 1, date(2024, 2, 6))

    def test_unavailable_price_changes_nothing(self, portfolio):
        """Should not create a Security when the price cannot be fetched"""
        with pytest.raises(PriceUnavailableError):
            portfolio.add_stock('NOPE', 1, date(2024, 2, 6))

        assert portfolio.list_symbols() == []
        assert not portfolio.find_security('NOPE').ok


# ============================================================================
# PHASE 2: Sell Tests
# ============================================================================

class TestSellStock:
    """Test sell_stock"""

    def test_sell_at_close(self, portfolio, source):
        """Should record the sale at the close on that date"""
        portfolio.add_stock('AAPL', 10, date(2024, 2, 6))
        record = portfolio.sell_stock('AAPL', 4, date(2024, 2, 9))

        assert record.unit_price == source.close('AAPL', date(2024, 2, 9))
        assert portfolio.stock_quantity('AAPL', date(2024, 2, 9)) == 6

    def test_sell_unknown_symbol(self, portfolio):
        """Should raise SymbolNotFoundError for a symbol never held"""
        with pytest.raises(SymbolNotFoundError) as exc_info:
            portfolio.sell_stock('AAPL', 1, date(2024, 2, 6))

        assert isinstance(exc_info.value, LookupError)

    def test_oversell(self, portfolio, source):
        """Should reject selling more than held before fetching a price"""
        portfolio.add_stock('AAPL', 10, date(2024, 2, 6))
        calls = len(source.calls)

        with pytest.raises(InsufficientQuantityError):
            portfolio.sell_stock('AAPL', 11, date(2024, 2, 20))

        assert len(source.calls) == calls
        assert portfolio.stock_quantity('AAPL', date(2024, 2, 20)) == 10


# ============================================================================
# PHASE 3: Valuation Tests
# ============================================================================

class TestValuation:
    """Test value_on and investment_on"""

    def test_value_of_two_holdings(self, portfolio, source):
        """Should sum quantity x close for each holding"""
        day = date(2024, 2, 6)
        portfolio.add_stock('AAPL', 10, day)
        portfolio.add_stock('GOOGL', 5, day)

        expected = source.close('AAPL', day) * 10 + source.close('GOOGL', day) * 5
        assert portfolio.value_on(day) == expected

    def test_sunday_value_uses_friday_prices(self, portfolio, source):
        """Should value a Sunday with the previous Friday's closes"""
        portfolio.add_stock('AAPL', 10, date(2024, 2, 1))
        portfolio.add_stock('GOOGL', 5, date(2024, 2, 1))

        friday = date(2024, 2, 2)
        expected = source.close('AAPL', friday) * 10 + source.close('GOOGL', friday) * 5
        assert portfolio.value_on(date(2024, 2, 4)) == expected
        assert portfolio.value_on(date(2024, 2, 4)) == portfolio.value_on(friday)

    def test_value_excludes_later_purchases(self, portfolio, source):
        """Should only count securities held on the date"""
        portfolio.add_stock('AAPL', 10, date(2024, 2, 6))
        portfolio.add_stock('GOOGL', 5, date(2024, 2, 9))
        portfolio.add_stock('MSFT', 5, date(2024, 2, 12))

        friday = date(2024, 2, 9)
        without_msft = source.close('AAPL', friday) * 10 + source.close('GOOGL', friday) * 5
        assert portfolio.value_on(friday) == without_msft
        assert portfolio.value_on(date(2024, 2, 11)) == without_msft

        monday = date(2024, 2, 12)
        assert portfolio.value_on(monday) == (
            source.close('AAPL', monday) * 10
            + source.close('GOOGL', monday) * 5
            + source.close('MSFT', monday) * 5
        )

    def test_value_before_any_purchase(self, portfolio):
        """Should be zero before the first purchase"""
        portfolio.add_stock('AAPL', 10, date(2024, 2, 6))

        assert portfolio.value_on(date(2024, 2, 5)) == Decimal('0')

    def test_value_excludes_sold_out_security(self, portfolio, source):
        """Should drop a security once fully sold"""
        portfolio.add_stock('AAPL', 10, date(2024, 2, 6))
        portfolio.add_stock('GOOGL', 5, date(2024, 2, 6))
        portfolio.sell_stock('AAPL', 10, date(2024, 2, 8))

        day = date(2024, 2, 9)
        assert portfolio.value_on(day) == source.close('GOOGL', day) * 5
        assert portfolio.holdings_on(day) == {'GOOGL': 5}

    def test_investment(self, portfolio, source):
        """Should net purchase and sale amounts"""
        portfolio.add_stock('AAPL', 10, date(2024, 2, 6))
        portfolio.sell_stock('AAPL', 4, date(2024, 2, 9))

        expected = (source.close('AAPL', date(2024, 2, 6)) * 10
                    - source.close('AAPL', date(2024, 2, 9)) * 4)
        assert portfolio.investment_on(date(2024, 2, 9)) == expected
        assert portfolio.investment_on(date(2024, 2, 5)) == Decimal('0')

    def test_stock_quantity_never_held(self, portfolio):
        """Should be zero for a symbol never held"""
        assert portfolio.stock_quantity('AAPL', date(2024, 2, 6)) == 0


# ============================================================================
# PHASE 4: Snapshot Tests
# ============================================================================

class TestSnapshots:
    """Test holdings, composition and performance series"""

    def test_composition(self, portfolio, source):
        """Should break the value down per symbol"""
        day = date(2024, 2, 6)
        portfolio.add_stock('MSFT', 2, day)
        portfolio.add_stock('AAPL', 10, day)

        frame = portfolio.composition_on(day)

        assert list(frame.columns) == ['symbol', 'quantity', 'price', 'value']
        assert list(frame['symbol']) == ['AAPL', 'MSFT']
        assert frame.loc[0, 'value'] == source.close('AAPL', day) * 10
        assert sum(frame['value'], Decimal('0')) == portfolio.value_on(day)

    def test_performance_series(self, portfolio):
        """Should sample values at evenly spaced dates"""
        portfolio.add_stock('AAPL', 10, date(2024, 2, 1))
        series = portfolio.performance_series(date(2024, 2, 1), date(2024, 2, 29), points=5)

        assert isinstance(series, pd.Series)
        assert series.name == 'Growth'
        assert series.index.name == 'date'
        assert list(series.index) == [
            date(2024, 2, 1), date(2024, 2, 8), date(2024, 2, 15),
            date(2024, 2, 22), date(2024, 2, 29)
        ]
        assert series[date(2024, 2, 8)] == portfolio.value_on(date(2024, 2, 8))

    def test_performance_series_short_range(self, portfolio):
        """Should collapse duplicate sample dates"""
        series = portfolio.performance_series(date(2024, 2, 5), date(2024, 2, 6), points=10)

        assert list(series.index) == [date(2024, 2, 5), date(2024, 2, 6)]
        assert all(v == Decimal('0') for v in series)

    def test_performance_series_invalid(self, portfolio):
        """Should reject reversed ranges and non-positive point counts"""
        with pytest.raises(ValidationError):
            portfolio.performance_series(date(2024, 2, 29), date(2024, 2, 1))
        with pytest.raises(ValidationError):
            portfolio.performance_series(date(2024, 2, 1), date(2024, 2, 29), points=0)


# ============================================================================
# PHASE 5: Record Tests
# ============================================================================

class TestRecords:
    """Test to_record / from_record"""

    def test_round_trip_without_fetching(self, portfolio, cache, source):
        """Should rebuild the same holdings from recorded prices"""
        portfolio.add_stock('AAPL', 10, date(2024, 2, 6))
        portfolio.add_stock('GOOGL', 5, date(2024, 2, 9))
        portfolio.sell_stock('AAPL', 3, date(2024, 2, 12))
        record = portfolio.to_record()
        calls = len(source.calls)

        rebuilt = Portfolio.from_record(record, cache, today=fixed_today)

        assert len(source.calls) == calls
        assert rebuilt.name == 'Growth'
        assert rebuilt.list_symbols() == ['AAPL', 'GOOGL']
        assert rebuilt.stock_quantity('AAPL', date(2024, 2, 12)) == 7
        assert rebuilt.investment_on(TODAY) == portfolio.investment_on(TODAY)
        assert rebuilt.to_record() == record

    def test_record_transactions_sorted(self, portfolio):
        """Should list transactions by date then symbol"""
        portfolio.add_stock('MSFT', 1, date(2024, 2, 9))
        portfolio.add_stock('GOOGL', 1, date(2024, 2, 6))
        portfolio.add_stock('AAPL', 1, date(2024, 2, 9))

        record = portfolio.to_record()

        assert [(t['date'], t['symbol']) for t in record['transactions']] == [
            ('2024-02-06', 'GOOGL'), ('2024-02-09', 'AAPL'), ('2024-02-09', 'MSFT')
        ]

    def test_from_record_missing_keys(self, cache):
        """Should reject a record without transactions"""
        with pytest.raises(ValueError, match="missing 'name' or 'transactions'"):
            Portfolio.from_record({'name': 'Growth'}, cache)

    def test_from_record_bad_transaction(self, cache):
        """Should reject a transaction without a quantity"""
        record = {'name': 'Growth', 'transactions': [
            {'symbol': 'AAPL', 'kind': 'BUY', 'unit_price': '100', 'date': '2024-02-06'}
        ]}

        with pytest.raises(ValueError, match="Invalid transaction"):
            Portfolio.from_record(record, cache, today=fixed_today)

    @pytest.mark.parametrize('quantity', [10.7, 10.0, '10', True, 0, -3])
    def test_from_record_rejects_non_integer_quantity(self, cache, quantity):
        """Should reject recorded quantities instead of truncating or coercing them"""
        record = {'name': 'Growth', 'transactions': [
            {'symbol': 'AAPL', 'kind': 'BUY', 'quantity': quantity,
             'unit_price': '100', 'date': '2024-02-06'}
        ]}

        with pytest.raises(InvalidQuantityError):
            Portfolio.from_record(record, cache, today=fixed_today)

    def test_from_record_rejects_oversell(self, cache):
        """Should replay sells through the ledger checks"""
        record = {'name': 'Growth', 'transactions': [
            {'symbol': 'AAPL', 'kind': 'BUY', 'quantity': 1, 'unit_price': '100', 'date': '2024-02-06'},
            {'symbol': 'AAPL', 'kind': 'SELL', 'quantity': 2, 'unit_price': '100', 'date': '2024-02-07'},
        ]}

        with pytest.raises(InsufficientQuantityError):
            Portfolio.from_record(record, cache, today=fixed_today)


# ============================================================================
# PHASE 6: Concurrency Tests
# ============================================================================

class TestConcurrency:
    """Test mutations from several threads"""

    def test_concurrent_buys_on_distinct_dates(self, portfolio):
        """Should record every purchase"""
        days = trading_days(date(2024, 3, 1), date(2024, 3, 15))

        with ThreadPoolExecutor(max_workers=len(days)) as executor:
            list(executor.map(lambda d: portfolio.add_stock('AAPL', 1, d), days))

        assert portfolio.stock_quantity('AAPL', TODAY) == len(days)

    def test_concurrent_duplicate_buys(self, portfolio):
        """Should accept exactly one of several same-date purchases"""
        def attempt(_):
            try:
                portfolio.add_stock('AAPL', 1, date(2024, 3, 4))
                return True
            except DuplicateTransactionError:
                return False

        with ThreadPoolExecutor(max_workers=6) as executor:
            outcomes = list(executor.map(attempt, range(6)))

        assert outcomes.count(True) == 1
        assert portfolio.stock_quantity('AAPL', TODAY) == 1

    def test_valuation_during_buys(self, portfolio):
        """Should value a consistent snapshot while purchases run"""
        portfolio.add_stock('AAPL', 1, date(2024, 3, 1))
        days = trading_days(date(2024, 3, 4), date(2024, 3, 15))

        with ThreadPoolExecutor(max_workers=4) as executor:
            buys = [executor.submit(portfolio.add_stock, 'GOOGL', 1, d) for d in days]
            values = [executor.submit(portfolio.value_on, date(2024, 3, 15)) for _ in range(5)]
            for future in buys + values:
                future.result()

        assert portfolio.stock_quantity('GOOGL', date(2024, 3, 15)) == len(days)

    def test_valuation_during_sells(self, portfolio, source):
        """Should value one ledger state per call while sales run"""
        day = date(2024, 3, 15)
        portfolio.add_stock('AAPL', 100, date(2024, 3, 1))
        sell_days = trading_days(date(2024, 3, 4), day)

        with ThreadPoolExecutor(max_workers=4) as executor:
            sells = [executor.submit(portfolio.sell_stock, 'AAPL', 1, d) for d in sell_days]
            values = [executor.submit(portfolio.value_on, day) for _ in range(10)]
            for future in sells:
                future.result()
            results = [future.result() for future in values]

        close = source.close('AAPL', day)
        possible = {close * (100 - sold) for sold in range(len(sell_days) + 1)}
        assert set(results) <= possible
        assert portfolio.stock_quantity('AAPL', day) == 100 - len(sell_days)

    def test_valuation_ignores_sale_made_mid_valuation(self, portfolio, cache, source, monkeypatch):
        """Should keep valuing the ledgers as they were when the call started"""
        day = date(2024, 2, 9)
        portfolio.add_stock('AAPL', 10, date(2024, 2, 6))
        portfolio.add_stock('GOOGL', 5, date(2024, 2, 6))

        price_on = cache.price_on
        sold = []

        def price_on_then_sell(symbol, on):
            # The GOOGL position closes while AAPL is being priced
            if symbol == 'AAPL' and not sold:
                sold.append(portfolio.sell_stock('GOOGL', 5, date(2024, 2, 8)))
            return price_on(symbol, on)

        monkeypatch.setattr(cache, 'price_on', price_on_then_sell)

        value = portfolio.value_on(day)

        assert sold
        assert value == source.close('AAPL', day) * 10 + source.close('GOOGL', day) * 5
        assert portfolio.value_on(day) == source.close('AAPL', day) * 10
