"""
Portfolio State Files

JSON persistence for PortfolioService.export_state() records. The price cache
persists itself separately (PriceCache.save/load).

File layout:
    {
      "portfolios": [{"name": ..., "transactions": [...]}, ...],
      "last_updated": "2024-02-06T12:00:00Z"
    }
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)

REQUIRED_TRANSACTION_FIELDS = {'symbol', 'kind', 'quantity', 'unit_price', 'date'}


def save_portfolios(path: str, portfolios: List[dict]) -> None:
    """
    Write portfolio records to a JSON file, creating parent folders.

    Raises:
        ValueError: If the file cannot be written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        'portfolios': portfolios,
        'last_updated': datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
    }

    try:
        with open(path, 'w') as f:
            json.dump(data, f, indent=2)
    except IOError as e:
        logger.error(f"Failed to write portfolios file: {e}")
        raise ValueError(f"Failed to write portfolios to {path}: {e}") from e

    logger.info(f"Saved {len(portfolios)} portfolios to {path}")


def load_portfolios(path: str) -> List[dict]:
    """
    Read portfolio records from a JSON file written by save_portfolios().

    Returns:
        List of portfolio records; empty when the file does not exist

    Raises:
        ValueError: If the file is corrupted or missing required fields
    """
    path = Path(path)
    if not path.exists():
        logger.debug(f"No portfolios file at {path}, starting fresh")
        return []

    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in portfolios file {path}: {e}") from e

    if not isinstance(data, dict) or 'portfolios' not in data:
        raise ValueError(f"Invalid portfolios file: missing 'portfolios' key in {path}")

    portfolios = data['portfolios']
    if not isinstance(portfolios, list):
        raise ValueError(f"Invalid portfolios file: 'portfolios' must be a list in {path}")

    for record in portfolios:
        if not isinstance(record, dict) or 'name' not in record or 'transactions' not in record:
            raise ValueError(f"Invalid portfolio record in {path}: {record}")
        for txn in record['transactions']:
            missing_fields = REQUIRED_TRANSACTION_FIELDS - set(txn.keys())
            if missing_fields:
                raise ValueError(
                    f"Transaction in portfolio {record['name']!r} missing required fields: "
                    f"{missing_fields}"
                )

    logger.info(f"Loaded {len(portfolios)} portfolios from {path}")
    return portfolios
