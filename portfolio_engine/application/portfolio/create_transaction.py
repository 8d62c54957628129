"""
Use case: Place a buy or sell transaction.

Input: CreateTransactionCommand (user_id, portfolio_id, symbol, quantity,
       price_per_share, type, triggered_by)
Output: TransactionResult
Side effects: Persists an ON_HOLD transaction; settles it at once
              when the market is open (holding mutated, status terminal).
Failure cases: InvalidQuantityError, InvalidPriceError, PortfolioNotFoundError.
"""

import logging

from portfolio_engine.application.portfolio.dtos import (
    CreateTransactionCommand,
    TransactionResult,
    to_transaction_result,
)
from portfolio_engine.domain.portfolio.entities import ZERO, Transaction
from portfolio_engine.domain.portfolio.errors import (
    InvalidPriceError,
    InvalidQuantityError,
    PortfolioNotFoundError,
)
from portfolio_engine.domain.portfolio.ports import (
    PortfolioRepository,
    TransactionRepository,
)
from portfolio_engine.domain.portfolio.settlement_service import (
    TransactionSettlementService,
)

logger = logging.getLogger(__name__)


class CreateTransactionUseCase:
    """Validates and records a transaction, then tries to settle it."""

    def __init__(
        self,
        transaction_repo: TransactionRepository,
        portfolio_repo: PortfolioRepository,
        settlement: TransactionSettlementService,
    ) -> None:
        self._transaction_repo = transaction_repo
        self._portfolio_repo = portfolio_repo
        self._settlement = settlement

    def execute(self, command: CreateTransactionCommand) -> TransactionResult:
        """Run the create-transaction use case.

        Args:
            command: The transaction request.

        Returns:
            The transaction, ON_HOLD if the market is closed.

        Raises:
            InvalidQuantityError: If quantity is not positive.
            InvalidPriceError: If price per share is not positive.
            PortfolioNotFoundError: If the portfolio is missing or not the user's.
        """
        if command.quantity <= ZERO:
            raise InvalidQuantityError(command.quantity)
        if command.price_per_share <= ZERO:
            raise InvalidPriceError(command.price_per_share)

        portfolio = self._portfolio_repo.get_by_id(command.portfolio_id)
        if portfolio is None or portfolio.user_id != command.user_id:
            raise PortfolioNotFoundError(command.portfolio_id)

        transaction = Transaction(
            user_id=command.user_id,
            portfolio_id=command.portfolio_id,
            symbol=command.symbol.upper(),
            quantity=command.quantity,
            price_per_share=command.price_per_share,
            type=command.type,
            triggered_by=command.triggered_by,
        )
        self._transaction_repo.add(transaction)
        logger.info(
            "Transaction %s created: %s %s x%s for portfolio=%s",
            transaction.id,
            transaction.type.value,
            transaction.symbol,
            transaction.quantity,
            transaction.portfolio_id,
        )

        self._settlement.settle(transaction)
        return to_transaction_result(transaction)
