"""
Domain service: Model registry.

Looks up model clients by AIModel so use cases can ask for
"the Gaia client" or "every prediction model" without knowing
how the clients are built.
"""

import logging
from typing import Optional

from portfolio_engine.domain.portfolio.entities import AIModel
from portfolio_engine.domain.portfolio.errors import UnknownModelError
from portfolio_engine.domain.portfolio.ports import ModelClientPort

logger = logging.getLogger(__name__)


class ModelRegistry:
    """Model clients keyed by AIModel."""

    PREDICTION_MODELS = (AIModel.APOLLO, AIModel.IGNIS)

    def __init__(self, clients: Optional[list[ModelClientPort]] = None) -> None:
        self._clients: dict[AIModel, ModelClientPort] = {}
        for client in clients or []:
            self.register(client)

    def register(self, client: ModelClientPort) -> None:
        self._clients[client.model] = client

    def get(self, model: AIModel) -> ModelClientPort:
        """Return the client for a model.

        Raises:
            UnknownModelError: If no client is registered for it.
        """
        client = self._clients.get(model)
        if client is None:
            raise UnknownModelError(model.value)
        return client

    def all(self) -> list[ModelClientPort]:
        return list(self._clients.values())

    def prediction_clients(self) -> list[ModelClientPort]:
        """Return the registered clients that produce symbol predictions."""
        return [self._clients[m] for m in self.PREDICTION_MODELS if m in self._clients]

    def close(self) -> None:
        """Close every registered client, logging the ones that fail to close."""
        for client in self._clients.values():
            try:
                client.close()
            except Exception:
                logger.warning("Closing the %s client raised", client.model.value, exc_info=True)
