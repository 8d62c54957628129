"""
Use case: Settle every pending transaction.

Input: None
Output: SettlePendingResult
Side effects: ON_HOLD transactions move to SUCCEEDED or FAILED, oldest first,
              when the market is open.
Failure cases: None. Individual failures are recorded on the transactions.
"""

import logging

from portfolio_engine.application.portfolio.dtos import SettlePendingResult
from portfolio_engine.domain.portfolio.settlement_service import (
    TransactionSettlementService,
)

logger = logging.getLogger(__name__)


class SettlePendingTransactionsUseCase:
    """Runs one settlement sweep."""

    def __init__(self, settlement: TransactionSettlementService) -> None:
        self._settlement = settlement

    def execute(self) -> SettlePendingResult:
        summary = self._settlement.settle_pending()
        if summary.market_open:
            logger.info(
                "Settlement sweep: %d settled (%d succeeded, %d failed)",
                summary.settled,
                summary.succeeded,
                summary.failed,
            )
        else:
            logger.debug("Settlement sweep skipped: market closed")

        return SettlePendingResult(
            settled=summary.settled,
            succeeded=summary.succeeded,
            failed=summary.failed,
            market_open=summary.market_open,
        )
