"""
Portfolio CLI

Non-interactive shell over the portfolio core. Loads saved portfolios and the
price cache at startup, runs one command, and saves state again afterwards.
"""

import argparse
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from holdings.config import PortfolioConfig
from holdings.controller import PortfolioController
from holdings.errors import PortfolioError
from holdings.persistence import load_portfolios, save_portfolios
from holdings.service import PortfolioService
from pricing.analysis import AnalysisEngine
from pricing.price_cache import PriceCache
from pricing.price_source import AlphaVantageSource, PriceSource, YFinanceSource

# Logger will be configured in main() or by caller
logger = logging.getLogger(__name__)

MUTATING_COMMANDS = {'create', 'buy', 'sell'}


def parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"dates must be in 'YYYY-MM-DD' format, got '{value}'")


def build_price_source(name: str, api_key: str = '', timeout: float = 10.0) -> PriceSource:
    if name == 'yfinance':
        return YFinanceSource(timeout=int(timeout))
    if name == 'alphavantage':
        return AlphaVantageSource(api_key=api_key, timeout=int(timeout))
    raise ValueError(f"Invalid price source '{name}'. Must be one of ['yfinance', 'alphavantage']")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Track portfolios and analyse historical stock prices',
        epilog='''
Examples:
  # Create a portfolio and buy shares at the close
  python -m holdings.cli create growth
  python -m holdings.cli buy growth AAPL 10 2024-02-06

  # Portfolio value on a Sunday uses Friday's closes
  python -m holdings.cli value growth 2024-02-04

  # 5/20-day moving average crossovers
  python -m holdings.cli moving-crossovers AAPL 2024-01-01 2024-06-30 --short 5 --long 20
''',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '--data-dir',
        default=PortfolioConfig.DATA_DIR,
        help=f'Directory for portfolios and price cache (default: {PortfolioConfig.DATA_DIR})'
    )
    parser.add_argument(
        '--source',
        default=PortfolioConfig.PRICE_SOURCE,
        choices=['yfinance', 'alphavantage'],
        help=f'Price source (default: {PortfolioConfig.PRICE_SOURCE})'
    )
    parser.add_argument(
        '--api-key',
        default=PortfolioConfig.ALPHA_VANTAGE_API_KEY,
        help='Alpha Vantage API key (default: $ALPHA_VANTAGE_API_KEY)'
    )
    parser.add_argument(
        '--fetch-timeout',
        type=float,
        default=PortfolioConfig.FETCH_TIMEOUT_SECONDS,
        help=f'Seconds to wait for one price fetch (default: {PortfolioConfig.FETCH_TIMEOUT_SECONDS})'
    )
    parser.add_argument(
        '--log-level',
        default=PortfolioConfig.LOG_LEVEL,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help=f'Logging level (default: {PortfolioConfig.LOG_LEVEL})'
    )

    commands = parser.add_subparsers(dest='command', required=True)

    create = commands.add_parser('create', help='Create an empty portfolio')
    create.add_argument('name')

    commands.add_parser('list', help='List portfolio names')

    for name, help_text in (('buy', 'Buy shares at the close'), ('sell', 'Sell shares at the close')):
        trade = commands.add_parser(name, help=help_text)
        trade.add_argument('portfolio')
        trade.add_argument('symbol')
        trade.add_argument('quantity', type=int)
        trade.add_argument('date', type=parse_date)

    for name, help_text in (('value', 'Portfolio market value on a date'),
                            ('investment', 'Net cash invested up to a date')):
        query = commands.add_parser(name, help=help_text)
        query.add_argument('portfolio')
        query.add_argument('date', type=parse_date)

    performance = commands.add_parser('performance', help='Portfolio value sampled over a range')
    performance.add_argument('portfolio')
    performance.add_argument('start', type=parse_date)
    performance.add_argument('end', type=parse_date)
    performance.add_argument('--points', type=int, default=10,
                             help='Number of sample dates (default: 10)')

    moving_average = commands.add_parser('moving-average', help='N-day moving average')
    moving_average.add_argument('symbol')
    moving_average.add_argument('date', type=parse_date)
    moving_average.add_argument('window', type=int)

    crossovers = commands.add_parser('crossovers', help='Days closing above the open')
    crossovers.add_argument('symbol')
    crossovers.add_argument('start', type=parse_date)
    crossovers.add_argument('end', type=parse_date)

    moving_crossovers = commands.add_parser('moving-crossovers',
                                            help='Short/long moving-average crossover signals')
    moving_crossovers.add_argument('symbol')
    moving_crossovers.add_argument('start', type=parse_date)
    moving_crossovers.add_argument('end', type=parse_date)
    moving_crossovers.add_argument('--short', type=int, default=5,
                                   help='Short moving-average period (default: 5)')
    moving_crossovers.add_argument('--long', type=int, default=20,
                                   help='Long moving-average period (default: 20)')

    warm = commands.add_parser('warm-cache', help='Prefetch quotes for symbols over a range')
    warm.add_argument('symbols', help='Comma-separated symbols (e.g., AAPL,MSFT)')
    warm.add_argument('start', type=parse_date)
    warm.add_argument('end', type=parse_date)

    return parser


def run_command(args: argparse.Namespace, controller: PortfolioController,
                cache: PriceCache) -> int:
    """Dispatch one parsed command. Returns the exit code."""
    command = args.command

    if command == 'create':
        result = controller.create_portfolio(args.name)
    elif command == 'list':
        result = controller.list_portfolios()
    elif command == 'buy':
        result = controller.buy(args.portfolio, args.symbol, args.quantity, args.date)
    elif command == 'sell':
        result = controller.sell(args.portfolio, args.symbol, args.quantity, args.date)
    elif command == 'value':
        result = controller.portfolio_value(args.portfolio, args.date)
    elif command == 'investment':
        result = controller.portfolio_investment(args.portfolio, args.date)
    elif command == 'performance':
        result = controller.performance(args.portfolio, args.start, args.end, args.points)
    elif command == 'moving-average':
        result = controller.moving_average(args.symbol, args.date, args.window)
    elif command == 'crossovers':
        result = controller.crossover_days(args.symbol, args.start, args.end)
    elif command == 'moving-crossovers':
        result = controller.moving_crossover_days(args.symbol, args.start, args.end,
                                                  args.short, args.long)
    elif command == 'warm-cache':
        symbols = [s.strip() for s in args.symbols.split(',') if s.strip()]
        failed, added = cache.warm_many(symbols, args.start, args.end, show_progress=True)
        logger.info(f"Warmed {len(added)} symbols, {sum(added.values())} new entries")
        if failed:
            logger.warning(f"Failed symbols: {sorted(failed)}")
        return 1 if failed and not added else 0
    else:
        raise ValueError(f"Unknown command '{command}'")

    if not result.ok:
        logger.error(f"{command} failed: {result.message}")
        return 1

    value = result.value
    if isinstance(value, list):
        for item in value:
            print(item)
    elif hasattr(value, 'to_string'):
        print(value.to_string())
    elif value is not None:
        print(value)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for standalone execution"""
    args = build_parser().parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    portfolios_file = Path(args.data_dir) / PortfolioConfig.PORTFOLIOS_FILENAME
    cache_file = Path(args.data_dir) / PortfolioConfig.PRICE_CACHE_FILENAME

    try:
        source = build_price_source(args.source, args.api_key, args.fetch_timeout)
        with PriceCache(source, fetch_timeout=args.fetch_timeout,
                        lookback_days=PortfolioConfig.FALLBACK_LOOKBACK_DAYS,
                        max_workers=PortfolioConfig.MAX_WORKERS) as cache:
            cache.load(cache_file)
            service = PortfolioService(cache)
            service.import_state(load_portfolios(portfolios_file))
            controller = PortfolioController(service, AnalysisEngine(cache))

            exit_code = run_command(args, controller, cache)

            # Explicit flush point: state only when it can have changed, cache always
            if args.command in MUTATING_COMMANDS and exit_code == 0:
                save_portfolios(portfolios_file, service.export_state())
            cache.save(cache_file)

        return exit_code

    except (ValueError, PortfolioError) as e:
        logger.error(f"Validation error: {str(e)}")
        logger.error("Please check your arguments and saved state and try again.")
        return 1

    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
