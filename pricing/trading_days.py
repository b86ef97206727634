"""
Trading Day Helpers

Weekday arithmetic used by the price cache and the analysis engine.
Only Saturday and Sunday are treated as non-trading days here; exchange
holidays are discovered from the price source's data (see PriceCache).
"""

from datetime import date, timedelta
from typing import Iterator


def is_weekend(day: date) -> bool:
    """True for Saturday (5) and Sunday (6)"""
    return day.weekday() >= 5


def previous_weekday(day: date) -> date:
    """Most recent weekday strictly before day (Monday -> Friday)."""
    prev = day - timedelta(days=1)
    while is_weekend(prev):
        prev -= timedelta(days=1)
    return prev


def iter_weekdays(start: date, end: date) -> Iterator[date]:
    """Yield every weekday in [start, end] in ascending order."""
    day = start
    while day <= end:
        if not is_weekend(day):
            yield day
        day += timedelta(days=1)
