"""
Use case: Revalue holdings at current market prices.

Input: RefreshValuationsCommand (optional portfolio_id)
Output: RefreshValuationsResult
Side effects: market_value and change_percent of each holding refreshed.
Failure cases: None. Symbols without a price are skipped and counted.
"""

import logging
from decimal import Decimal
from typing import Optional

from portfolio_engine.application.portfolio.dtos import (
    RefreshValuationsCommand,
    RefreshValuationsResult,
)
from portfolio_engine.domain.portfolio.holdings_ledger import HoldingsLedger
from portfolio_engine.domain.portfolio.ports import HoldingRepository, MarketOraclePort

logger = logging.getLogger(__name__)


class RefreshValuationsUseCase:
    """Refreshes market values of one portfolio or of every portfolio."""

    def __init__(
        self,
        holding_repo: HoldingRepository,
        ledger: HoldingsLedger,
        oracle: MarketOraclePort,
    ) -> None:
        self._holding_repo = holding_repo
        self._ledger = ledger
        self._oracle = oracle

    def execute(self, command: RefreshValuationsCommand) -> RefreshValuationsResult:
        if command.portfolio_id is not None:
            holdings = self._holding_repo.list_for_portfolio(command.portfolio_id)
        else:
            holdings = self._holding_repo.list_all()

        prices: dict[str, Optional[Decimal]] = {}
        revalued = skipped = 0

        for holding in holdings:
            if holding.symbol not in prices:
                prices[holding.symbol] = self._lookup(holding.symbol)
            price = prices[holding.symbol]
            if price is None:
                skipped += 1
                continue

            if self._ledger.revalue(holding.portfolio_id, holding.symbol, price) is None:
                # Sold off since it was listed.
                skipped += 1
            else:
                revalued += 1

        logger.info("Valuation refresh: %d revalued, %d skipped", revalued, skipped)
        return RefreshValuationsResult(revalued=revalued, skipped=skipped)

    def _lookup(self, symbol: str) -> Optional[Decimal]:
        try:
            return self._oracle.current_price(symbol)
        except Exception:
            logger.warning("Price lookup for %s failed", symbol, exc_info=True)
            return None
