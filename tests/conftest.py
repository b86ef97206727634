import pytest

from fakes import default_source, fixed_today
from holdings.portfolio import Portfolio
from holdings.service import PortfolioService
from pricing.analysis import AnalysisEngine
from pricing.price_cache import PriceCache


@pytest.fixture
def source():
    return default_source()


@pytest.fixture
def cache(source):
    cache = PriceCache(source, fetch_timeout=None, today=fixed_today)
    yield cache
    cache.close()


@pytest.fixture
def portfolio(cache):
    return Portfolio('Growth', cache, today=fixed_today)


@pytest.fixture
def service(cache):
    return PortfolioService(cache, today=fixed_today)


@pytest.fixture
def engine(cache):
    return AnalysisEngine(cache)
