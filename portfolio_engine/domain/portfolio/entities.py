"""
Domain entities for the portfolio bounded context.

Entities represent core business objects with identity and lifecycle.
They contain no framework imports and no IO operations.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def utcnow() -> datetime:
    """Return the current timezone-aware UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Return a fresh identifier for a persisted entity."""
    return str(uuid4())


class TransactionType(Enum):
    """Direction of a transaction."""

    BUY = "buy"
    SELL = "sell"


class TransactionStatus(Enum):
    """Settlement state of a transaction."""

    ON_HOLD = "on_hold"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.ON_HOLD


class TriggeredBy(Enum):
    """Origin of a transaction."""

    USER = "user"
    AI = "ai"


class OptimizationStatus(Enum):
    """Lifecycle state of an optimization record."""

    CREATED = "created"
    IN_PROGRESS = "in_progress"
    APPLIED = "applied"
    CANCELED = "canceled"
    FAILED = "failed"


class RecommendationAction(Enum):
    """Rebalancing action suggested for one symbol."""

    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class AIModel(Enum):
    """External model services the platform talks to."""

    APOLLO = "apollo"
    IGNIS = "ignis"
    GAIA = "gaia"


@dataclass
class Portfolio:
    """A named collection of holdings owned by one user."""

    user_id: str
    name: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)


@dataclass
class Holding:
    """Shares of one symbol held in a portfolio.

    ``market_value`` and ``change_percent`` are derived from the last
    price the holding was touched with, see ``revalue``. ``version`` is
    the store's row version; 0 means the holding has not been stored.
    """

    portfolio_id: str
    symbol: str
    quantity: Decimal
    cost_basis: Decimal = ZERO
    market_value: Decimal = ZERO
    change_percent: Decimal = ZERO
    last_updated: datetime = field(default_factory=utcnow)
    version: int = 0

    def revalue(self, current_price: Decimal) -> None:
        """Recompute market value and change percent from a price."""
        self.market_value = self.quantity * current_price
        if self.cost_basis > ZERO:
            self.change_percent = (
                (self.market_value - self.cost_basis) / self.cost_basis * HUNDRED
            )
        else:
            self.change_percent = ZERO


@dataclass
class Transaction:
    """A buy or sell order against a portfolio holding."""

    user_id: str
    portfolio_id: str
    symbol: str
    quantity: Decimal
    price_per_share: Decimal
    type: TransactionType
    triggered_by: TriggeredBy = TriggeredBy.USER
    status: TransactionStatus = TransactionStatus.ON_HOLD
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    settled_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    @property
    def value(self) -> Decimal:
        return self.quantity * self.price_per_share


@dataclass(frozen=True)
class OptimizationRecommendation:
    """Target position for one symbol within an optimization."""

    symbol: str
    action: RecommendationAction
    current_quantity: Decimal
    target_quantity: Decimal
    current_weight: Decimal = ZERO
    target_weight: Decimal = ZERO
    explanation: str = ""


@dataclass(frozen=True)
class OptimizationProposal:
    """What an optimization provider returns for a portfolio."""

    recommendations: list[OptimizationRecommendation]
    explanation: str = ""
    confidence: Decimal = ZERO
    metrics: dict[str, Any] = field(default_factory=dict)
    model_version: str = ""


@dataclass
class OptimizationRecord:
    """A rebalancing request and its outcome."""

    user_id: str
    portfolio_id: str
    status: OptimizationStatus = OptimizationStatus.IN_PROGRESS
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)
    confidence: Decimal = ZERO
    explanation: str = ""
    metrics: dict[str, Any] = field(default_factory=dict)
    recommendations: list[OptimizationRecommendation] = field(default_factory=list)
    is_applied: bool = False
    applied_at: Optional[datetime] = None
    model_version: str = ""

    @property
    def symbols(self) -> list[str]:
        return [r.symbol for r in self.recommendations]


@dataclass(frozen=True)
class ModelPrediction:
    """A heat prediction for one symbol from a prediction model.

    ``score`` and ``confidence`` are on a 0-100 scale.
    """

    symbol: str
    score: Decimal
    confidence: Decimal
    direction: str
    explanation: str
    model: AIModel
    predicted_at: datetime = field(default_factory=utcnow)
