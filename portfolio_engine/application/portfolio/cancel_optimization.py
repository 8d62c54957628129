"""
Use case: Cancel an optimization.

Input: OptimizationQuery (user_id, optimization_id)
Output: OptimizationRecordResult
Side effects: The record moves CREATED/IN_PROGRESS -> CANCELED.
Failure cases: OptimizationNotFoundError, AlreadyAppliedError, InvalidStateError.
"""

from portfolio_engine.application.portfolio.dtos import (
    OptimizationQuery,
    OptimizationRecordResult,
    to_record_result,
)
from portfolio_engine.domain.portfolio.optimization_lifecycle import (
    OptimizationLifecycle,
)


class CancelOptimizationUseCase:
    """Cancels one of the user's optimizations."""

    def __init__(self, lifecycle: OptimizationLifecycle) -> None:
        self._lifecycle = lifecycle

    def execute(self, query: OptimizationQuery) -> OptimizationRecordResult:
        record = self._lifecycle.cancel_optimization(
            query.user_id, query.optimization_id
        )
        return to_record_result(record)
