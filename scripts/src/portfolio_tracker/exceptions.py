"""Typed exception hierarchy for portfolio operations.

Every error carries a message that can be shown to the user as is.
Validation and business-rule errors abort the operation before anything is
written; quote errors are recovered by the caller; persistence errors wrap
whatever the store raised.
"""


class PortfolioError(Exception):
    """Base exception for all portfolio tracker errors."""


class ValidationError(PortfolioError):
    """A required form field is missing or does not parse."""

    def __init__(self, message: str, field: str = ""):
        self.field = field
        super().__init__(message)


class InsufficientFundsError(PortfolioError):
    """A buy or withdrawal exceeds the available cash."""

    def __init__(self, message: str, currency: str = "", required: float = 0.0, available: float = 0.0):
        self.currency = currency
        self.required = required
        self.available = available
        super().__init__(message)


class InsufficientHoldingsError(PortfolioError):
    """A sell exceeds the quantity held at that point of the trade history."""

    def __init__(self, message: str, ticker: str = "", requested: float = 0.0, available: float = 0.0):
        self.ticker = ticker
        self.requested = requested
        self.available = available
        super().__init__(message)


class HoldingNotFoundError(PortfolioError):
    """No holding is stored under the given ticker."""


class DuplicateHoldingError(PortfolioError):
    """A holding with the given ticker already exists."""


class TradeNotFoundError(PortfolioError):
    """No trade with the given id exists on the holding."""


class MemoNotFoundError(PortfolioError):
    """No memo with the given id exists."""


class QuoteFetchError(PortfolioError):
    """A price or exchange-rate lookup failed.

    Callers recover by keeping the last stored value or a default rate.
    """

    def __init__(self, message: str, ticker: str = ""):
        self.ticker = ticker
        super().__init__(message)


class PersistenceError(PortfolioError):
    """Reading from or writing to the document store failed."""

    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(message)
