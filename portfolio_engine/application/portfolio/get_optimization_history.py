"""
Use case: List a portfolio's optimization history.

Input: OptimizationHistoryQuery (user_id, portfolio_id, start, end)
Output: list[OptimizationRecordResult], newest first
Side effects: None.
Failure cases: PortfolioNotFoundError, InvalidDateRangeError.
"""

from portfolio_engine.application.portfolio.dtos import (
    OptimizationHistoryQuery,
    OptimizationRecordResult,
    to_record_result,
)
from portfolio_engine.domain.portfolio.optimization_lifecycle import (
    OptimizationLifecycle,
)


class GetOptimizationHistoryUseCase:
    """Returns optimization records within a date range."""

    def __init__(self, lifecycle: OptimizationLifecycle) -> None:
        self._lifecycle = lifecycle

    def execute(
        self, query: OptimizationHistoryQuery
    ) -> list[OptimizationRecordResult]:
        records = self._lifecycle.get_history(
            query.user_id, query.portfolio_id, query.start, query.end
        )
        return [to_record_result(r) for r in records]
