"""
Data Transfer Objects for the portfolio application layer.

DTOs carry data between the interface and application layers.
They are plain dataclasses with no behavior; the ``to_*`` functions
at the bottom map domain entities onto them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from portfolio_engine.domain.portfolio.entities import (
    ModelPrediction,
    OptimizationRecord,
    Transaction,
    TransactionType,
    TriggeredBy,
)
from portfolio_engine.domain.portfolio.optimization_lifecycle import OptimizationResult


# ── Transactions ─────────────────────────────────────────────────


@dataclass(frozen=True)
class CreateTransactionCommand:
    """Input DTO for a user-placed buy or sell.

    Attributes:
        user_id: Caller's user ID.
        portfolio_id: Portfolio the transaction settles against.
        symbol: Stock ticker symbol.
        quantity: Number of shares (> 0).
        price_per_share: Price the caller transacts at (> 0).
        type: BUY or SELL.
        triggered_by: USER unless the caller is an automated process.
    """

    user_id: str
    portfolio_id: str
    symbol: str
    quantity: Decimal
    price_per_share: Decimal
    type: TransactionType
    triggered_by: TriggeredBy = TriggeredBy.USER


@dataclass(frozen=True)
class CreateRecommendationTransactionCommand:
    """Input DTO for a transaction that moves a holding to a target quantity.

    Attributes:
        user_id: Caller's user ID.
        portfolio_id: Portfolio the transaction settles against.
        symbol: Stock ticker symbol.
        current_quantity: Quantity the recommendation assumed is held.
        target_quantity: Quantity the recommendation wants held.
    """

    user_id: str
    portfolio_id: str
    symbol: str
    current_quantity: Decimal
    target_quantity: Decimal


@dataclass(frozen=True)
class CancelTransactionCommand:
    """Input DTO for canceling an on-hold transaction."""

    user_id: str
    transaction_id: str


@dataclass(frozen=True)
class ListTransactionsQuery:
    """Input DTO for listing a user's transactions.

    Attributes:
        user_id: Caller's user ID.
        portfolio_id: Optional filter; must be one of the user's portfolios.
    """

    user_id: str
    portfolio_id: Optional[str] = None


@dataclass(frozen=True)
class TransactionResult:
    """Output DTO for a transaction."""

    id: str
    user_id: str
    portfolio_id: str
    symbol: str
    quantity: Decimal
    price_per_share: Decimal
    value: Decimal
    type: str
    triggered_by: str
    status: str
    created_at: datetime
    settled_at: Optional[datetime]
    failure_reason: Optional[str]


@dataclass(frozen=True)
class SettlePendingResult:
    """Output DTO for a pending-settlement sweep.

    Attributes:
        settled: Transactions that reached SUCCEEDED or FAILED.
        succeeded: Of those, how many SUCCEEDED.
        failed: Of those, how many FAILED.
        market_open: False when the sweep was skipped because the market is closed.
    """

    settled: int
    succeeded: int
    failed: int
    market_open: bool


# ── Optimizations ────────────────────────────────────────────────


@dataclass(frozen=True)
class RequestOptimizationCommand:
    """Input DTO for requesting an optimization of a portfolio."""

    user_id: str
    portfolio_id: str


@dataclass(frozen=True)
class OptimizationQuery:
    """Input DTO addressing one of a user's optimization records."""

    user_id: str
    optimization_id: str


@dataclass(frozen=True)
class AvailabilityQuery:
    """Input DTO for checking whether an optimization may be requested."""

    user_id: str
    portfolio_id: str


@dataclass(frozen=True)
class OptimizationHistoryQuery:
    """Input DTO for the optimization history of a portfolio.

    Attributes:
        user_id: Caller's user ID.
        portfolio_id: Portfolio to list records for.
        start: Inclusive lower bound; defaults to ``end`` minus the default window.
        end: Inclusive upper bound; defaults to now.
    """

    user_id: str
    portfolio_id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass(frozen=True)
class RecommendationItem:
    """Output DTO for one recommended position."""

    symbol: str
    action: str
    current_quantity: Decimal
    target_quantity: Decimal
    current_weight: Decimal
    target_weight: Decimal
    explanation: str


@dataclass(frozen=True)
class OptimizationRecordResult:
    """Output DTO for an optimization record."""

    id: str
    user_id: str
    portfolio_id: str
    timestamp: datetime
    status: str
    confidence: Decimal
    explanation: str
    metrics: dict[str, Any]
    recommendations: list[RecommendationItem]
    is_applied: bool
    applied_at: Optional[datetime]
    model_version: str


@dataclass(frozen=True)
class OptimizationOutcome:
    """Output DTO for requesting or applying an optimization."""

    optimization_id: str
    successful: bool
    status: str
    message: str
    record: Optional[OptimizationRecordResult] = None


@dataclass(frozen=True)
class OptimizationStatusResult:
    """Output DTO for an optimization's status."""

    optimization_id: str
    status: str


@dataclass(frozen=True)
class AvailabilityResult:
    """Output DTO describing whether a new optimization may be requested.

    Attributes:
        has_ongoing: An optimization is IN_PROGRESS for the pair.
        remaining_cool_off_seconds: Seconds until the cool-off expires (0 when none).
        can_request: Neither of the above blocks a new request.
    """

    portfolio_id: str
    has_ongoing: bool
    remaining_cool_off_seconds: int
    can_request: bool


@dataclass(frozen=True)
class CancelStaleOptimizationsCommand:
    """Input DTO for invalidating recommendations after new predictions."""

    symbols: list[str]


# ── Valuations & models ──────────────────────────────────────────


@dataclass(frozen=True)
class RefreshValuationsCommand:
    """Input DTO for revaluing holdings; all portfolios when no ID is given."""

    portfolio_id: Optional[str] = None


@dataclass(frozen=True)
class RefreshValuationsResult:
    """Output DTO for a valuation sweep."""

    revalued: int
    skipped: int


@dataclass(frozen=True)
class ModelHealthItem:
    """Health of one model service."""

    model: str
    healthy: bool
    version: Optional[str] = None


@dataclass(frozen=True)
class ModelHealthResult:
    """Output DTO for the model health check."""

    models: list[ModelHealthItem]

    @property
    def all_healthy(self) -> bool:
        return all(m.healthy for m in self.models)


@dataclass(frozen=True)
class RetrainModelCommand:
    """Input DTO for asking a model service to retrain."""

    model: str


@dataclass(frozen=True)
class RetrainModelResult:
    """Output DTO for a retraining request."""

    model: str
    requested: bool
    message: str


@dataclass(frozen=True)
class RefreshPredictionsCommand:
    """Input DTO for fetching fresh predictions for symbols."""

    symbols: list[str]


@dataclass(frozen=True)
class PredictionItem:
    """Output DTO for one model prediction."""

    symbol: str
    model: str
    score: Decimal
    confidence: Decimal
    direction: str
    explanation: str
    predicted_at: datetime


@dataclass(frozen=True)
class RefreshPredictionsResult:
    """Output DTO for a prediction refresh."""

    predictions: list[PredictionItem] = field(default_factory=list)
    canceled_optimizations: int = 0


# ── Mapping ──────────────────────────────────────────────────────


def to_transaction_result(transaction: Transaction) -> TransactionResult:
    return TransactionResult(
        id=transaction.id,
        user_id=transaction.user_id,
        portfolio_id=transaction.portfolio_id,
        symbol=transaction.symbol,
        quantity=transaction.quantity,
        price_per_share=transaction.price_per_share,
        value=transaction.value,
        type=transaction.type.value,
        triggered_by=transaction.triggered_by.value,
        status=transaction.status.value,
        created_at=transaction.created_at,
        settled_at=transaction.settled_at,
        failure_reason=transaction.failure_reason,
    )


def to_record_result(record: OptimizationRecord) -> OptimizationRecordResult:
    return OptimizationRecordResult(
        id=record.id,
        user_id=record.user_id,
        portfolio_id=record.portfolio_id,
        timestamp=record.timestamp,
        status=record.status.value,
        confidence=record.confidence,
        explanation=record.explanation,
        metrics=dict(record.metrics),
        recommendations=[
            RecommendationItem(
                symbol=r.symbol,
                action=r.action.value,
                current_quantity=r.current_quantity,
                target_quantity=r.target_quantity,
                current_weight=r.current_weight,
                target_weight=r.target_weight,
                explanation=r.explanation,
            )
            for r in record.recommendations
        ],
        is_applied=record.is_applied,
        applied_at=record.applied_at,
        model_version=record.model_version,
    )


def to_outcome(result: OptimizationResult) -> OptimizationOutcome:
    return OptimizationOutcome(
        optimization_id=result.optimization_id,
        successful=result.successful,
        status=result.status.value,
        message=result.message,
        record=to_record_result(result.record) if result.record else None,
    )


def to_prediction_item(prediction: ModelPrediction) -> PredictionItem:
    return PredictionItem(
        symbol=prediction.symbol,
        model=prediction.model.value,
        score=prediction.score,
        confidence=prediction.confidence,
        direction=prediction.direction,
        explanation=prediction.explanation,
        predicted_at=prediction.predicted_at,
    )
