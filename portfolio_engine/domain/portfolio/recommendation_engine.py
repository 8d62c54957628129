"""
Domain service: Recommendation application engine.

Turns an optimization record's target quantities into holdings,
all or nothing: every recommended symbol is locked and snapshotted
first, and any failure restores the snapshot. The caller's ``commit``
step runs before the locks are released; if it refuses, the holdings
are restored as well.
"""

import logging
from collections.abc import Callable
from typing import Optional

from portfolio_engine.domain.portfolio.entities import OptimizationRecord, Portfolio
from portfolio_engine.domain.portfolio.holdings_ledger import HoldingsLedger

logger = logging.getLogger(__name__)


class RecommendationApplicationEngine:
    """Applies an optimization's recommendations to a portfolio."""

    def __init__(self, ledger: HoldingsLedger) -> None:
        self._ledger = ledger

    def apply(
        self,
        record: OptimizationRecord,
        portfolio: Portfolio,
        commit: Optional[Callable[[], bool]] = None,
    ) -> bool:
        """Set every recommended symbol to its target quantity.

        Args:
            record: The optimization whose recommendations are applied.
            portfolio: The portfolio owning the holdings.
            commit: Called once every target is written; returning False
                (or raising) rolls the holdings back.

        Returns:
            True when all recommendations were applied and committed,
            False after a rollback.
        """
        symbols = record.symbols
        with self._ledger.locked(portfolio.id, symbols):
            snapshot = self._ledger.snapshot(portfolio.id, symbols)
            try:
                for recommendation in record.recommendations:
                    self._ledger.set_target_quantity(
                        portfolio.id,
                        recommendation.symbol,
                        recommendation.target_quantity,
                    )
                committed = commit() if commit is not None else True
            except Exception:
                logger.exception(
                    "Applying optimization %s to portfolio %s failed; rolling back",
                    record.id,
                    portfolio.id,
                )
                self._ledger.restore(portfolio.id, snapshot)
                return False

            if not committed:
                logger.warning(
                    "Optimization %s was not committed; rolling back portfolio %s",
                    record.id,
                    portfolio.id,
                )
                self._ledger.restore(portfolio.id, snapshot)
                return False

        logger.info(
            "Applied %d recommendations of optimization %s to portfolio %s",
            len(record.recommendations),
            record.id,
            portfolio.id,
        )
        return True
