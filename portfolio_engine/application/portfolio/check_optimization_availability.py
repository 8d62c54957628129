"""
Use case: Check whether a new optimization may be requested.

Input: AvailabilityQuery (user_id, portfolio_id)
Output: AvailabilityResult
Side effects: None.
Failure cases: None.
"""

from portfolio_engine.application.portfolio.dtos import (
    AvailabilityQuery,
    AvailabilityResult,
)
from portfolio_engine.domain.portfolio.optimization_lifecycle import (
    OptimizationLifecycle,
)


class CheckOptimizationAvailabilityUseCase:
    """Reports ongoing optimizations and the remaining cool-off."""

    def __init__(self, lifecycle: OptimizationLifecycle) -> None:
        self._lifecycle = lifecycle

    def execute(self, query: AvailabilityQuery) -> AvailabilityResult:
        has_ongoing = self._lifecycle.has_ongoing_optimization(
            query.user_id, query.portfolio_id
        )
        remaining = self._lifecycle.remaining_cool_off(query.user_id, query.portfolio_id)
        remaining_seconds = int(remaining.total_seconds())

        return AvailabilityResult(
            portfolio_id=query.portfolio_id,
            has_ongoing=has_ongoing,
            remaining_cool_off_seconds=remaining_seconds,
            can_request=not has_ongoing and remaining_seconds == 0,
        )
