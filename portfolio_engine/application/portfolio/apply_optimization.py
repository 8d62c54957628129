"""
Use case: Apply an optimization's recommendations.

Input: OptimizationQuery (user_id, optimization_id)
Output: OptimizationOutcome
Side effects: Holdings set to the recommended target quantities and the
              record marked APPLIED; on rollback the record returns to CREATED.
Failure cases: OptimizationNotFoundError, AlreadyAppliedError,
               OptimizationStillInProgressError, InvalidStateError.
"""

import logging

from portfolio_engine.application.portfolio.dtos import (
    OptimizationOutcome,
    OptimizationQuery,
    to_outcome,
)
from portfolio_engine.domain.portfolio.optimization_lifecycle import (
    OptimizationLifecycle,
)

logger = logging.getLogger(__name__)


class ApplyOptimizationUseCase:
    """Applies a created optimization to its portfolio."""

    def __init__(self, lifecycle: OptimizationLifecycle) -> None:
        self._lifecycle = lifecycle

    def execute(self, query: OptimizationQuery) -> OptimizationOutcome:
        result = self._lifecycle.apply_recommendation(
            query.user_id, query.optimization_id
        )
        if not result.successful:
            logger.warning(
                "Optimization %s not applied: %s", query.optimization_id, result.message
            )
        return to_outcome(result)
