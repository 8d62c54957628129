"""
Use case: Report the health of every model service.

Input: None
Output: ModelHealthResult
Side effects: One health request per registered model.
Failure cases: None. A model that errors is reported unhealthy.
"""

import logging

from portfolio_engine.application.portfolio.dtos import ModelHealthItem, ModelHealthResult
from portfolio_engine.domain.portfolio.model_registry import ModelRegistry

logger = logging.getLogger(__name__)


class CheckModelHealthUseCase:
    """Asks each registered model whether it is healthy."""

    def __init__(self, registry: ModelRegistry) -> None:
        self._registry = registry

    def execute(self) -> ModelHealthResult:
        items = []
        for client in self._registry.all():
            try:
                healthy = client.check_health()
                version = client.model_version() if healthy else None
            except Exception:
                logger.warning("Health check of %s raised", client.model.value, exc_info=True)
                healthy, version = False, None
            items.append(
                ModelHealthItem(model=client.model.value, healthy=healthy, version=version)
            )
        return ModelHealthResult(models=items)
