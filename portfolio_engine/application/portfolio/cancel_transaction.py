"""
Use case: Cancel a pending transaction.

Input: CancelTransactionCommand (user_id, transaction_id)
Output: TransactionResult
Side effects: The transaction moves ON_HOLD -> CANCELED.
Failure cases: TransactionNotFoundError, InvalidStateError.
"""

from portfolio_engine.application.portfolio.dtos import (
    CancelTransactionCommand,
    TransactionResult,
    to_transaction_result,
)
from portfolio_engine.domain.portfolio.settlement_service import (
    TransactionSettlementService,
)


class CancelTransactionUseCase:
    """Cancels a user's own on-hold transaction."""

    def __init__(self, settlement: TransactionSettlementService) -> None:
        self._settlement = settlement

    def execute(self, command: CancelTransactionCommand) -> TransactionResult:
        transaction = self._settlement.cancel(command.transaction_id, command.user_id)
        return to_transaction_result(transaction)
