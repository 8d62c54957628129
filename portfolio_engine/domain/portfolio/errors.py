"""
Domain-specific errors for the portfolio bounded context.

All errors raised from the domain layer must be defined here.
Each error carries an ErrorKind that the interface layer maps
to an HTTP status. No framework imports allowed.
"""

from datetime import timedelta
from enum import Enum


class ErrorKind(Enum):
    """Category of a domain failure, independent of transport."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    INSUFFICIENT_HOLDINGS = "insufficient_holdings"
    PRICE_UNAVAILABLE = "price_unavailable"
    PROVIDER = "provider"


class PortfolioDomainError(Exception):
    """Base error for all portfolio domain errors."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class InvalidQuantityError(PortfolioDomainError):
    """Raised when a share quantity is zero or negative."""

    kind = ErrorKind.VALIDATION

    def __init__(self, quantity: object) -> None:
        super().__init__(f"Quantity must be greater than zero, got {quantity}")
        self.quantity = quantity


class InvalidPriceError(PortfolioDomainError):
    """Raised when a price per share is zero or negative."""

    kind = ErrorKind.VALIDATION

    def __init__(self, price: object) -> None:
        super().__init__(f"Price per share must be greater than zero, got {price}")
        self.price = price


class InvalidDateRangeError(PortfolioDomainError):
    """Raised when a history query starts after it ends."""

    kind = ErrorKind.VALIDATION

    def __init__(self, start: object, end: object) -> None:
        super().__init__(f"Start date {start} is after end date {end}")
        self.start = start
        self.end = end


class PortfolioNotFoundError(PortfolioDomainError):
    """Raised when a portfolio does not exist or belongs to another user."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, portfolio_id: str) -> None:
        super().__init__(f"Portfolio not found: {portfolio_id}")
        self.portfolio_id = portfolio_id


class EmptyPortfolioError(PortfolioDomainError):
    """Raised when an optimization is requested for a portfolio with no holdings."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, portfolio_id: str) -> None:
        super().__init__(f"Portfolio has no holdings: {portfolio_id}")
        self.portfolio_id = portfolio_id


class TransactionNotFoundError(PortfolioDomainError):
    """Raised when a transaction does not exist or belongs to another user."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Transaction not found: {transaction_id}")
        self.transaction_id = transaction_id


class OptimizationNotFoundError(PortfolioDomainError):
    """Raised when an optimization record does not exist for the user."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, optimization_id: str) -> None:
        super().__init__(f"Optimization not found: {optimization_id}")
        self.optimization_id = optimization_id


class OptimizationInProgressError(PortfolioDomainError):
    """Raised when another optimization for the portfolio is still running."""

    kind = ErrorKind.CONFLICT

    def __init__(self, portfolio_id: str) -> None:
        super().__init__(
            f"An optimization is already in progress for portfolio {portfolio_id}"
        )
        self.portfolio_id = portfolio_id


class CoolOffActiveError(PortfolioDomainError):
    """Raised when an optimization was applied too recently."""

    kind = ErrorKind.CONFLICT

    def __init__(self, portfolio_id: str, remaining: timedelta) -> None:
        hours = remaining.total_seconds() / 3600
        super().__init__(
            f"Optimization cool-off active for portfolio {portfolio_id}: "
            f"{hours:.1f} hours remaining"
        )
        self.portfolio_id = portfolio_id
        self.remaining = remaining


class PendingRecommendationError(PortfolioDomainError):
    """Raised when a created optimization still awaits application or cancelation."""

    kind = ErrorKind.CONFLICT

    def __init__(self, portfolio_id: str, optimization_id: str) -> None:
        super().__init__(
            f"Optimization {optimization_id} for portfolio {portfolio_id} "
            "must be applied or canceled first"
        )
        self.portfolio_id = portfolio_id
        self.optimization_id = optimization_id


class AlreadyAppliedError(PortfolioDomainError):
    """Raised when an optimization has already been applied."""

    kind = ErrorKind.CONFLICT

    def __init__(self, optimization_id: str) -> None:
        super().__init__(f"Optimization already applied: {optimization_id}")
        self.optimization_id = optimization_id


class OptimizationStillInProgressError(PortfolioDomainError):
    """Raised when applying an optimization whose provider call is still running."""

    kind = ErrorKind.CONFLICT

    def __init__(self, optimization_id: str) -> None:
        super().__init__(f"Optimization is still in progress: {optimization_id}")
        self.optimization_id = optimization_id


class InvalidStateError(PortfolioDomainError):
    """Raised when an entity is not in a state that allows the operation."""

    kind = ErrorKind.INVALID_STATE

    def __init__(self, entity: str, entity_id: str, state: str, operation: str) -> None:
        super().__init__(f"Cannot {operation} {entity} {entity_id} in state {state}")
        self.entity = entity
        self.entity_id = entity_id
        self.state = state
        self.operation = operation


class InsufficientHoldingsError(PortfolioDomainError):
    """Raised when selling more shares than the portfolio holds."""

    kind = ErrorKind.INSUFFICIENT_HOLDINGS

    def __init__(self, symbol: str, requested: object, available: object) -> None:
        super().__init__(
            f"Insufficient holdings for {symbol}: requested {requested}, "
            f"available {available}"
        )
        self.symbol = symbol
        self.requested = requested
        self.available = available


class HoldingWriteConflictError(PortfolioDomainError):
    """Raised when a holding keeps changing underneath a ledger write."""

    kind = ErrorKind.CONFLICT

    def __init__(self, portfolio_id: str, symbol: str, attempts: int) -> None:
        super().__init__(
            f"Holding {symbol} of portfolio {portfolio_id} changed concurrently "
            f"{attempts} times in a row"
        )
        self.portfolio_id = portfolio_id
        self.symbol = symbol
        self.attempts = attempts


class PriceUnavailableError(PortfolioDomainError):
    """Raised when no current price can be determined for a symbol."""

    kind = ErrorKind.PRICE_UNAVAILABLE

    def __init__(self, symbol: str) -> None:
        super().__init__(f"No current price available for {symbol}")
        self.symbol = symbol


class ProviderError(PortfolioDomainError):
    """Raised when an external model or optimization provider fails."""

    kind = ErrorKind.PROVIDER

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"Provider {provider} failed: {reason}")
        self.provider = provider
        self.reason = reason


class UnknownModelError(PortfolioDomainError):
    """Raised when no client is registered for the requested model."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, model: str) -> None:
        super().__init__(f"No client registered for model: {model}")
        self.model = model


class RetrainNotSupportedError(PortfolioDomainError):
    """Raised when retraining is requested for a model that cannot be retrained."""

    kind = ErrorKind.VALIDATION

    def __init__(self, model: str) -> None:
        super().__init__(f"Model {model} does not support retraining")
        self.model = model
