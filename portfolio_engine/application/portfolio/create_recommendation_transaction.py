"""
Use case: Create a transaction from a recommendation delta.

Input: CreateRecommendationTransactionCommand (user_id, portfolio_id, symbol,
       current_quantity, target_quantity)
Output: TransactionResult
Side effects: Persists an AI-triggered ON_HOLD transaction priced at the
              current market price; settles it at once when the market is open.
Failure cases: PortfolioNotFoundError, InvalidQuantityError (zero delta),
               PriceUnavailableError (no transaction is created).
"""

import logging

from portfolio_engine.application.portfolio.dtos import (
    CreateRecommendationTransactionCommand,
    TransactionResult,
    to_transaction_result,
)
from portfolio_engine.domain.portfolio.entities import (
    ZERO,
    Transaction,
    TransactionType,
    TriggeredBy,
)
from portfolio_engine.domain.portfolio.errors import (
    InvalidQuantityError,
    PortfolioNotFoundError,
    PriceUnavailableError,
)
from portfolio_engine.domain.portfolio.ports import (
    MarketOraclePort,
    PortfolioRepository,
    TransactionRepository,
)
from portfolio_engine.domain.portfolio.settlement_service import (
    TransactionSettlementService,
)

logger = logging.getLogger(__name__)


class CreateRecommendationTransactionUseCase:
    """Turns "hold N instead of M" into a BUY or SELL of the difference."""

    def __init__(
        self,
        transaction_repo: TransactionRepository,
        portfolio_repo: PortfolioRepository,
        oracle: MarketOraclePort,
        settlement: TransactionSettlementService,
    ) -> None:
        self._transaction_repo = transaction_repo
        self._portfolio_repo = portfolio_repo
        self._oracle = oracle
        self._settlement = settlement

    def execute(
        self, command: CreateRecommendationTransactionCommand
    ) -> TransactionResult:
        """Run the recommendation-transaction use case.

        Raises:
            PortfolioNotFoundError: If the portfolio is missing or not the user's.
            InvalidQuantityError: If target equals current quantity.
            PriceUnavailableError: If the oracle has no price for the symbol.
        """
        portfolio = self._portfolio_repo.get_by_id(command.portfolio_id)
        if portfolio is None or portfolio.user_id != command.user_id:
            raise PortfolioNotFoundError(command.portfolio_id)

        delta = command.target_quantity - command.current_quantity
        if delta == ZERO:
            raise InvalidQuantityError(delta)

        symbol = command.symbol.upper()
        price = self._oracle.current_price(symbol)
        if price is None:
            raise PriceUnavailableError(symbol)

        transaction = Transaction(
            user_id=command.user_id,
            portfolio_id=command.portfolio_id,
            symbol=symbol,
            quantity=abs(delta),
            price_per_share=price,
            type=TransactionType.BUY if delta > ZERO else TransactionType.SELL,
            triggered_by=TriggeredBy.AI,
        )
        self._transaction_repo.add(transaction)
        logger.info(
            "Recommendation transaction %s created: %s %s x%s at %s",
            transaction.id,
            transaction.type.value,
            symbol,
            transaction.quantity,
            price,
        )

        self._settlement.settle(transaction)
        return to_transaction_result(transaction)
