"""
Use case: Cancel recommendations made stale by new predictions.

Input: CancelStaleOptimizationsCommand (symbols)
Output: int, number of records canceled
Side effects: CREATED records of portfolios holding any symbol become CANCELED.
Failure cases: None.
"""

from portfolio_engine.application.portfolio.dtos import CancelStaleOptimizationsCommand
from portfolio_engine.domain.portfolio.optimization_lifecycle import (
    OptimizationLifecycle,
)


class CancelStaleOptimizationsUseCase:
    """Invalidates unapplied recommendations for the given symbols."""

    def __init__(self, lifecycle: OptimizationLifecycle) -> None:
        self._lifecycle = lifecycle

    def execute(self, command: CancelStaleOptimizationsCommand) -> int:
        symbols = {s.upper() for s in command.symbols}
        if not symbols:
            return 0
        return self._lifecycle.cancel_optimizations_for_symbols(symbols)
