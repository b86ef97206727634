"""
Configuration for the portfolio CLI shell

Core classes take explicit constructor arguments; only the shell reads these.
"""

import os


class PortfolioConfig:
    """Settings for building the price source, cache and state files"""

    # Price source: 'yfinance' or 'alphavantage'
    PRICE_SOURCE = os.getenv('PORTFOLIO_PRICE_SOURCE', 'yfinance')
    ALPHA_VANTAGE_API_KEY = os.getenv('ALPHA_VANTAGE_API_KEY', '')

    # Fetching
    FETCH_TIMEOUT_SECONDS = float(os.getenv('PORTFOLIO_FETCH_TIMEOUT', '10'))
    FALLBACK_LOOKBACK_DAYS = 10  # calendar days fetched before a date for weekend/holiday fallback
    MAX_WORKERS = 5

    # File paths
    DATA_DIR = os.getenv('PORTFOLIO_DATA_DIR', 'data')
    PORTFOLIOS_FILENAME = 'portfolios.json'
    PRICE_CACHE_FILENAME = 'price_cache.csv'

    # Logging
    LOG_LEVEL = os.getenv('PORTFOLIO_LOG_LEVEL', 'INFO')
