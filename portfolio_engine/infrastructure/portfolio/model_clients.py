"""
Adapter: HTTP model clients.

Implements ModelClientPort for the Apollo, Ignis and Gaia services and
OptimizationProviderPort for Gaia. All calls go through one httpx.Client
per service with the configured timeout; transport failures, timeouts,
error statuses and malformed bodies surface as ProviderError.

Wire format (JSON):
    GET  /health            {"status": "ok", "version": "..."}
    POST /train             {"success": true}
    GET  /predict?symbol=   {"heat_score": 0..1, "confidence": 0..1,
                             "direction": "...", "explanation": "..."}
    POST /optimize          {"portfolio_id": "...", "symbols": [...]}
                         -> {"explanation", "confidence", "recommendations": [...],
                             "sharpe_ratio", "mean_return", "variance", "expected_return"}
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from portfolio_engine.domain.portfolio.entities import (
    AIModel,
    HUNDRED,
    ModelPrediction,
    OptimizationProposal,
    OptimizationRecommendation,
    RecommendationAction,
    ZERO,
)
from portfolio_engine.domain.portfolio.errors import ProviderError
from portfolio_engine.domain.portfolio.ports import (
    ModelClientPort,
    OptimizationProviderPort,
)

logger = logging.getLogger(__name__)

UNKNOWN_VERSION = "unknown"
METRIC_FIELDS = ("sharpe_ratio", "mean_return", "variance", "expected_return")

APOLLO_PREDICTION_DAYS = 30
APOLLO_LOOKBACK_DAYS = 180


def _decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    if value is None:
        return default
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return default


def _percent(value: Any) -> Decimal:
    """Convert a 0..1 ratio into a whole 0..100 score."""
    scaled = (_decimal(value) * HUNDRED).quantize(Decimal("1"))
    return min(max(scaled, ZERO), HUNDRED)


class HttpModelClient(ModelClientPort):
    """Base client for a model service reachable over HTTP."""

    model: AIModel

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        name = self.model.value
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            raise ProviderError(name, "request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise ProviderError(name, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(name, type(exc).__name__) from exc
        except ValueError as exc:
            raise ProviderError(name, "invalid JSON body") from exc

        if not isinstance(body, dict):
            raise ProviderError(name, "unexpected response shape")
        return body

    def check_health(self) -> bool:
        try:
            body = self._request("GET", "/health")
        except ProviderError as exc:
            logger.warning("Health check failed: %s", exc.message)
            return False
        return body.get("status") == "ok"

    def model_version(self) -> str:
        try:
            body = self._request("GET", "/health")
        except ProviderError as exc:
            logger.warning("Could not read model version: %s", exc.message)
            return UNKNOWN_VERSION
        return str(body.get("version") or UNKNOWN_VERSION)

    def retrain(self) -> bool:
        body = self._request("POST", "/train")
        return bool(body.get("success"))

    def predict(self, symbols: list[str]) -> list[ModelPrediction]:
        """Predict each symbol; symbols the service cannot answer are skipped."""
        predictions = []
        for symbol in symbols:
            try:
                body = self._fetch_prediction(symbol)
            except ProviderError as exc:
                logger.warning("No %s prediction for %s: %s", self.model.value, symbol, exc.message)
                continue
            predictions.append(self._to_prediction(symbol, body))
        return predictions

    def _fetch_prediction(self, symbol: str) -> dict[str, Any]:
        return self._request("GET", "/predict", params={"symbol": symbol})

    def _to_prediction(self, symbol: str, body: dict[str, Any]) -> ModelPrediction:
        return ModelPrediction(
            symbol=symbol,
            score=_percent(body.get("heat_score")),
            confidence=_percent(body.get("confidence")),
            direction=str(body.get("direction") or "neutral"),
            explanation=str(body.get("explanation") or "No explanation provided"),
            model=self.model,
        )


class ApolloClient(HttpModelClient):
    """Daily-horizon prediction model."""

    model = AIModel.APOLLO

    def _fetch_prediction(self, symbol: str) -> dict[str, Any]:
        return self._request(
            "GET",
            "/predict",
            params={
                "symbol": symbol,
                "days": APOLLO_PREDICTION_DAYS,
                "lookback": APOLLO_LOOKBACK_DAYS,
            },
        )


class IgnisClient(HttpModelClient):
    """Intraday prediction model."""

    model = AIModel.IGNIS


class GaiaClient(HttpModelClient, OptimizationProviderPort):
    """Ensemble model that also produces portfolio optimizations."""

    model = AIModel.GAIA

    def retrain(self) -> bool:
        # Gaia combines the other models and has no training endpoint.
        logger.info("Gaia does not support retraining; request ignored")
        return False

    def _fetch_prediction(self, symbol: str) -> dict[str, Any]:
        body = self._request("POST", "/predict", json={"symbol": symbol})
        combined = body.get("combined_heat")
        if not isinstance(combined, dict):
            raise ProviderError(self.model.value, "missing combined_heat")
        return combined

    def optimize(self, portfolio_id: str, symbols: list[str]) -> OptimizationProposal:
        body = self._request(
            "POST",
            "/optimize",
            json={"portfolio_id": portfolio_id, "symbols": symbols},
        )

        raw = body.get("recommendations")
        if not isinstance(raw, list):
            raise ProviderError(self.model.value, "missing recommendations")

        recommendations = [self._to_recommendation(item) for item in raw]
        metrics = {k: body[k] for k in METRIC_FIELDS if body.get(k) is not None}

        return OptimizationProposal(
            recommendations=recommendations,
            explanation=str(body.get("explanation") or ""),
            confidence=_decimal(body.get("confidence")),
            metrics=metrics,
            model_version=self.model_version(),
        )

    def _to_recommendation(self, item: Any) -> OptimizationRecommendation:
        if not isinstance(item, dict) or not item.get("symbol"):
            raise ProviderError(self.model.value, "malformed recommendation")

        current = _decimal(item.get("current_quantity"))
        target = _decimal(item.get("target_quantity"), default=current)
        try:
            action = RecommendationAction(str(item.get("action", "")).lower())
        except ValueError:
            if target > current:
                action = RecommendationAction.BUY
            elif target < current:
                action = RecommendationAction.SELL
            else:
                action = RecommendationAction.HOLD

        return OptimizationRecommendation(
            symbol=str(item["symbol"]).upper(),
            action=action,
            current_quantity=current,
            target_quantity=target,
            current_weight=_decimal(item.get("current_weight")),
            target_weight=_decimal(item.get("target_weight")),
            explanation=str(item.get("explanation") or ""),
        )
