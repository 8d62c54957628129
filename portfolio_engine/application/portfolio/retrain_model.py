"""
Use case: Ask a prediction model service to retrain.

Input: RetrainModelCommand (model name)
Output: RetrainModelResult
Side effects: One retraining request to the model service.
Failure cases:
    - UnknownModelError if the name is not a model or has no client.
    - RetrainNotSupportedError if the model does not predict symbols.
    A service that errors or refuses is reported as not requested.
"""

import logging

from portfolio_engine.application.portfolio.dtos import (
    RetrainModelCommand,
    RetrainModelResult,
)
from portfolio_engine.domain.portfolio.entities import AIModel
from portfolio_engine.domain.portfolio.errors import (
    RetrainNotSupportedError,
    UnknownModelError,
)
from portfolio_engine.domain.portfolio.model_registry import ModelRegistry

logger = logging.getLogger(__name__)


class RetrainModelUseCase:
    """Forwards a retraining request to one prediction model."""

    def __init__(self, registry: ModelRegistry) -> None:
        self._registry = registry

    def execute(self, command: RetrainModelCommand) -> RetrainModelResult:
        name = command.model.strip().lower()
        try:
            model = AIModel(name)
        except ValueError:
            raise UnknownModelError(command.model) from None

        if model not in ModelRegistry.PREDICTION_MODELS:
            raise RetrainNotSupportedError(model.value)

        client = self._registry.get(model)
        try:
            requested = client.retrain()
        except Exception:
            logger.warning("Retraining request to %s raised", model.value, exc_info=True)
            requested = False

        if requested:
            logger.info("Retraining of %s requested", model.value)
            message = f"Retraining of {model.value} initiated"
        else:
            message = f"Model service {model.value} did not accept the retraining request"

        return RetrainModelResult(model=model.value, requested=requested, message=message)
