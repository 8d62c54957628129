"""
Use case: Fetch fresh predictions and invalidate stale recommendations.

Input: RefreshPredictionsCommand (symbols)
Output: RefreshPredictionsResult
Side effects: One prediction request per prediction model; CREATED
              optimizations of portfolios holding a freshly predicted
              symbol are CANCELED through CancelStaleOptimizationsUseCase.
Failure cases: None. A model that errors contributes no predictions.
"""

import logging

from portfolio_engine.application.portfolio.cancel_stale_optimizations import (
    CancelStaleOptimizationsUseCase,
)
from portfolio_engine.application.portfolio.dtos import (
    CancelStaleOptimizationsCommand,
    RefreshPredictionsCommand,
    RefreshPredictionsResult,
    to_prediction_item,
)
from portfolio_engine.domain.portfolio.model_registry import ModelRegistry

logger = logging.getLogger(__name__)


class RefreshPredictionsUseCase:
    """Collects predictions from the prediction models."""

    def __init__(
        self,
        registry: ModelRegistry,
        cancel_stale: CancelStaleOptimizationsUseCase,
    ) -> None:
        self._registry = registry
        self._cancel_stale = cancel_stale

    def execute(self, command: RefreshPredictionsCommand) -> RefreshPredictionsResult:
        symbols = sorted({s.upper() for s in command.symbols})
        if not symbols:
            return RefreshPredictionsResult()

        predictions = []
        for client in self._registry.prediction_clients():
            try:
                predictions.extend(client.predict(symbols))
            except Exception:
                logger.warning("Prediction refresh from %s failed", client.model.value, exc_info=True)

        predicted = sorted({p.symbol for p in predictions})
        canceled = self._cancel_stale.execute(
            CancelStaleOptimizationsCommand(symbols=predicted)
        )

        logger.info(
            "Prediction refresh: %d predictions for %d symbols, %d optimizations canceled",
            len(predictions),
            len(predicted),
            canceled,
        )
        return RefreshPredictionsResult(
            predictions=[to_prediction_item(p) for p in predictions],
            canceled_optimizations=canceled,
        )
