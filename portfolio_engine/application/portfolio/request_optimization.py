"""
Use case: Request an optimization of a portfolio.

Input: RequestOptimizationCommand (user_id, portfolio_id)
Output: OptimizationOutcome
Side effects: Reserves an IN_PROGRESS record, calls the optimization
              provider and stores its recommendations (CREATED) or marks
              the record FAILED.
Failure cases: PortfolioNotFoundError, EmptyPortfolioError,
               OptimizationInProgressError, CoolOffActiveError,
               PendingRecommendationError.
"""

import logging

from portfolio_engine.application.portfolio.dtos import (
    OptimizationOutcome,
    RequestOptimizationCommand,
    to_outcome,
)
from portfolio_engine.domain.portfolio.optimization_lifecycle import (
    OptimizationLifecycle,
)

logger = logging.getLogger(__name__)


class RequestOptimizationUseCase:
    """Starts an optimization for a user's portfolio."""

    def __init__(self, lifecycle: OptimizationLifecycle) -> None:
        self._lifecycle = lifecycle

    def execute(self, command: RequestOptimizationCommand) -> OptimizationOutcome:
        """Run the request-optimization use case.

        Provider failures do not raise; the outcome reports
        ``successful = False`` and the record ends FAILED.
        """
        logger.info(
            "Optimization requested by user=%s for portfolio=%s",
            command.user_id,
            command.portfolio_id,
        )
        result = self._lifecycle.request_optimization(
            command.user_id, command.portfolio_id
        )
        return to_outcome(result)
