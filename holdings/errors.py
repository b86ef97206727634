"""
Error taxonomy for portfolio and pricing operations

Every failure raised by the core derives from PortfolioError so callers can
turn it into an error result without catching unrelated exceptions.
Validation failures also derive from ValueError and lookup failures from
LookupError, matching the builtin exceptions callers would expect.
"""


class PortfolioError(Exception):
    """Base class for all portfolio/pricing failures"""


# ============================================================================
# Validation
# ============================================================================

class ValidationError(PortfolioError, ValueError):
    """Request rejected before any state was touched"""


class InvalidNameError(ValidationError):
    """Portfolio name is empty or blank"""


class PortfolioExistsError(ValidationError):
    """A portfolio with the same (case-insensitive) name already exists"""


class InvalidQuantityError(ValidationError):
    """Quantity is not a positive integer"""


class FutureDateError(ValidationError):
    """Transaction date is after today"""


class NonWeekdayError(ValidationError):
    """Purchase date falls on a Saturday or Sunday"""


class DuplicateTransactionError(ValidationError):
    """Symbol was already bought on the same date in this portfolio"""


# ============================================================================
# Lookup
# ============================================================================

class NotFoundError(PortfolioError, LookupError):
    """Requested portfolio or symbol does not exist"""


class PortfolioNotFoundError(NotFoundError):
    """No portfolio with the requested name"""


class SymbolNotFoundError(NotFoundError):
    """Portfolio never held the requested symbol"""


# ============================================================================
# Ledger / pricing / analysis
# ============================================================================

class InsufficientQuantityError(PortfolioError):
    """Sell quantity exceeds the quantity held on the sell date"""


class PriceUnavailableError(PortfolioError):
    """Price source has no data for the symbol, or could not be reached in time"""


class InvalidPeriodError(PortfolioError, ValueError):
    """Analysis window is misconfigured (non-positive or short >= long)"""
