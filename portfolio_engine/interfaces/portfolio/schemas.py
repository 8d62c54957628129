"""
Pydantic schemas for portfolio API request/response validation.

These schemas enforce input validation and define the API contract.
All fields use strict typing with constraints.
No business logic belongs here.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SYMBOL_DESCRIPTION = "Stock ticker symbol"
SYMBOL_PATTERN = r"^[A-Z][A-Z0-9.\-]*$"
SYMBOL_MIN_LEN = 1
SYMBOL_MAX_LEN = 10
ID_MAX_LEN = 64


class HealthResponse(BaseModel):
    """Response schema for the health endpoint."""

    status: str
    version: str
    storage: str
    scheduler_running: bool


class ErrorResponse(BaseModel):
    """Body of every error response."""

    error: str
    detail: Optional[str] = None


# ── Transactions ─────────────────────────────────────────────────


class CreateTransactionRequest(BaseModel):
    """Request schema for placing a transaction.

    Attributes:
        portfolio_id: Portfolio the transaction settles against.
        symbol: Ticker (uppercase, 1-10 chars).
        quantity: Shares to buy or sell (> 0).
        price_per_share: Transaction price (> 0).
        type: "buy" or "sell".
    """

    portfolio_id: str = Field(..., min_length=1, max_length=ID_MAX_LEN)
    symbol: str = Field(
        ...,
        min_length=SYMBOL_MIN_LEN,
        max_length=SYMBOL_MAX_LEN,
        pattern=SYMBOL_PATTERN,
        description=SYMBOL_DESCRIPTION,
    )
    quantity: Decimal = Field(..., gt=0, description="Number of shares")
    price_per_share: Decimal = Field(..., gt=0, description="Price per share")
    type: Literal["buy", "sell"]


class RecommendationTransactionRequest(BaseModel):
    """Request schema for a transaction that reaches a target quantity.

    Attributes:
        portfolio_id: Portfolio the transaction settles against.
        symbol: Ticker (uppercase, 1-10 chars).
        current_quantity: Quantity currently held according to the recommendation.
        target_quantity: Quantity the recommendation wants held.
    """

    portfolio_id: str = Field(..., min_length=1, max_length=ID_MAX_LEN)
    symbol: str = Field(
        ...,
        min_length=SYMBOL_MIN_LEN,
        max_length=SYMBOL_MAX_LEN,
        pattern=SYMBOL_PATTERN,
        description=SYMBOL_DESCRIPTION,
    )
    current_quantity: Decimal = Field(..., ge=0)
    target_quantity: Decimal = Field(..., ge=0)


class TransactionResponse(BaseModel):
    """A transaction in the response."""

    model_config = ConfigDict(from_attributes=True)

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
    settled_at: Optional[datetime] = None
    failure_reason: Optional[str] = None


class TransactionListResponse(BaseModel):
    """Response schema for listing transactions."""

    transactions: list[TransactionResponse]


class SettlePendingResponse(BaseModel):
    """Response schema for a settlement sweep."""

    model_config = ConfigDict(from_attributes=True)

    settled: int
    succeeded: int
    failed: int
    market_open: bool


# ── Optimizations ────────────────────────────────────────────────


class RequestOptimizationRequest(BaseModel):
    """Request schema for starting an optimization."""

    portfolio_id: str = Field(..., min_length=1, max_length=ID_MAX_LEN)


class RecommendationSchema(BaseModel):
    """One recommended position."""

    model_config = ConfigDict(from_attributes=True)

    symbol: str
    action: str
    current_quantity: Decimal
    target_quantity: Decimal
    current_weight: Decimal
    target_weight: Decimal
    explanation: str


class OptimizationRecordResponse(BaseModel):
    """An optimization record in the response."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    user_id: str
    portfolio_id: str
    timestamp: datetime
    status: str
    confidence: Decimal
    explanation: str
    metrics: dict[str, Any]
    recommendations: list[RecommendationSchema]
    is_applied: bool
    applied_at: Optional[datetime] = None
    model_version: str


class OptimizationOutcomeResponse(BaseModel):
    """Response schema for requesting or applying an optimization."""

    model_config = ConfigDict(from_attributes=True)

    optimization_id: str
    successful: bool
    status: str
    message: str
    record: Optional[OptimizationRecordResponse] = None


class OptimizationStatusResponse(BaseModel):
    """Response schema for an optimization's status."""

    model_config = ConfigDict(from_attributes=True)

    optimization_id: str
    status: str


class AvailabilityResponse(BaseModel):
    """Response schema for optimization availability."""

    model_config = ConfigDict(from_attributes=True)

    portfolio_id: str
    has_ongoing: bool
    remaining_cool_off_seconds: int
    can_request: bool


class OptimizationHistoryResponse(BaseModel):
    """Response schema for optimization history."""

    optimizations: list[OptimizationRecordResponse]


# ── Models ───────────────────────────────────────────────────────


class ModelHealthItemSchema(BaseModel):
    """Health of a single model service."""

    model_config = ConfigDict(from_attributes=True)

    model: str
    healthy: bool
    version: Optional[str] = None


class ModelHealthResponse(BaseModel):
    """Response schema for model health."""

    all_healthy: bool
    models: list[ModelHealthItemSchema]


class RetrainModelResponse(BaseModel):
    """Response schema for a retraining request."""

    model_config = ConfigDict(from_attributes=True)

    model: str
    requested: bool
    message: str
