"""
Use case: Get the status of an optimization.

Input: OptimizationQuery (user_id, optimization_id)
Output: OptimizationStatusResult
Side effects: None.
Failure cases: OptimizationNotFoundError.
"""

from portfolio_engine.application.portfolio.dtos import (
    OptimizationQuery,
    OptimizationStatusResult,
)
from portfolio_engine.domain.portfolio.optimization_lifecycle import (
    OptimizationLifecycle,
)


class GetOptimizationStatusUseCase:
    """Reads the status of one of the user's optimizations."""

    def __init__(self, lifecycle: OptimizationLifecycle) -> None:
        self._lifecycle = lifecycle

    def execute(self, query: OptimizationQuery) -> OptimizationStatusResult:
        status = self._lifecycle.get_status(query.user_id, query.optimization_id)
        return OptimizationStatusResult(
            optimization_id=query.optimization_id, status=status.value
        )
