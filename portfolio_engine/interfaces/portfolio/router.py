"""
FastAPI router for the portfolio bounded context.

All routes delegate to use cases. No business logic here.
Input validation is handled by Pydantic schemas.
Error mapping is handled by centralized error handlers.
The caller is identified by the X-User-Id header.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from portfolio_engine.application.portfolio.apply_optimization import (
    ApplyOptimizationUseCase,
)
from portfolio_engine.application.portfolio.cancel_optimization import (
    CancelOptimizationUseCase,
)
from portfolio_engine.application.portfolio.cancel_transaction import (
    CancelTransactionUseCase,
)
from portfolio_engine.application.portfolio.check_model_health import (
    CheckModelHealthUseCase,
)
from portfolio_engine.application.portfolio.check_optimization_availability import (
    CheckOptimizationAvailabilityUseCase,
)
from portfolio_engine.application.portfolio.create_recommendation_transaction import (
    CreateRecommendationTransactionUseCase,
)
from portfolio_engine.application.portfolio.create_transaction import (
    CreateTransactionUseCase,
)
from portfolio_engine.application.portfolio.dtos import (
    AvailabilityQuery,
    CancelTransactionCommand,
    CreateRecommendationTransactionCommand,
    CreateTransactionCommand,
    ListTransactionsQuery,
    OptimizationHistoryQuery,
    OptimizationQuery,
    RequestOptimizationCommand,
    RetrainModelCommand,
)
from portfolio_engine.application.portfolio.get_optimization_history import (
    GetOptimizationHistoryUseCase,
)
from portfolio_engine.application.portfolio.get_optimization_status import (
    GetOptimizationStatusUseCase,
)
from portfolio_engine.application.portfolio.list_transactions import (
    ListTransactionsUseCase,
)
from portfolio_engine.application.portfolio.request_optimization import (
    RequestOptimizationUseCase,
)
from portfolio_engine.application.portfolio.retrain_model import RetrainModelUseCase
from portfolio_engine.application.portfolio.settle_pending_transactions import (
    SettlePendingTransactionsUseCase,
)
from portfolio_engine.domain.portfolio.entities import TransactionType
from portfolio_engine.interfaces.portfolio.dependencies import (
    get_apply_optimization_use_case,
    get_cancel_optimization_use_case,
    get_cancel_transaction_use_case,
    get_check_model_health_use_case,
    get_create_recommendation_transaction_use_case,
    get_create_transaction_use_case,
    get_current_user_id,
    get_list_transactions_use_case,
    get_optimization_availability_use_case,
    get_optimization_history_use_case,
    get_optimization_status_use_case,
    get_request_optimization_use_case,
    get_retrain_model_use_case,
    get_settle_pending_use_case,
)
from portfolio_engine.interfaces.portfolio.schemas import (
    ID_MAX_LEN,
    AvailabilityResponse,
    CreateTransactionRequest,
    ErrorResponse,
    ModelHealthItemSchema,
    ModelHealthResponse,
    OptimizationHistoryResponse,
    OptimizationOutcomeResponse,
    OptimizationRecordResponse,
    OptimizationStatusResponse,
    RecommendationTransactionRequest,
    RequestOptimizationRequest,
    RetrainModelResponse,
    SettlePendingResponse,
    TransactionListResponse,
    TransactionResponse,
)
from portfolio_engine.shared.security.rate_limiting import HEAVY_RATE_LIMIT, limiter

router = APIRouter(prefix="/portfolio", tags=["portfolio"])


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive query datetimes as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ── Transactions ─────────────────────────────────────────────────


@router.post(
    "/transactions",
    response_model=TransactionResponse,
    status_code=201,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Place a transaction",
    description=(
        "Create a buy or sell transaction. It settles immediately when the "
        "market is open and stays on hold otherwise."
    ),
)
def create_transaction(
    request: CreateTransactionRequest,
    user_id: str = Depends(get_current_user_id),
    use_case: CreateTransactionUseCase = Depends(get_create_transaction_use_case),
) -> TransactionResponse:
    """Create and try to settle a user transaction."""
    command = CreateTransactionCommand(
        user_id=user_id,
        portfolio_id=request.portfolio_id,
        symbol=request.symbol,
        quantity=request.quantity,
        price_per_share=request.price_per_share,
        type=TransactionType(request.type),
    )
    result = use_case.execute(command)
    return TransactionResponse.model_validate(result)


@router.post(
    "/transactions/recommendation",
    response_model=TransactionResponse,
    status_code=201,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Place a transaction from a recommendation",
    description=(
        "Create the buy or sell that moves a holding from its current to its "
        "target quantity, priced at the current market price."
    ),
)
def create_recommendation_transaction(
    request: RecommendationTransactionRequest,
    user_id: str = Depends(get_current_user_id),
    use_case: CreateRecommendationTransactionUseCase = Depends(
        get_create_recommendation_transaction_use_case
    ),
) -> TransactionResponse:
    """Create a transaction for a recommendation delta."""
    command = CreateRecommendationTransactionCommand(
        user_id=user_id,
        portfolio_id=request.portfolio_id,
        symbol=request.symbol,
        current_quantity=request.current_quantity,
        target_quantity=request.target_quantity,
    )
    result = use_case.execute(command)
    return TransactionResponse.model_validate(result)


@router.get(
    "/transactions",
    response_model=TransactionListResponse,
    responses={404: {"model": ErrorResponse}},
    summary="List transactions",
    description="List the caller's transactions, newest first.",
)
def list_transactions(
    portfolio_id: Optional[str] = Query(None, min_length=1, max_length=ID_MAX_LEN),
    user_id: str = Depends(get_current_user_id),
    use_case: ListTransactionsUseCase = Depends(get_list_transactions_use_case),
) -> TransactionListResponse:
    """List the caller's transactions, optionally for one portfolio."""
    query = ListTransactionsQuery(user_id=user_id, portfolio_id=portfolio_id)
    results = use_case.execute(query)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(r) for r in results]
    )


@router.post(
    "/transactions/settle",
    response_model=SettlePendingResponse,
    summary="Settle pending transactions",
    description="Settle every on-hold transaction while the market is open.",
)
def settle_pending_transactions(
    use_case: SettlePendingTransactionsUseCase = Depends(get_settle_pending_use_case),
) -> SettlePendingResponse:
    """Run a settlement sweep."""
    result = use_case.execute()
    return SettlePendingResponse.model_validate(result)


@router.delete(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Cancel a transaction",
    description="Cancel an on-hold transaction the caller placed.",
)
def cancel_transaction(
    transaction_id: str,
    user_id: str = Depends(get_current_user_id),
    use_case: CancelTransactionUseCase = Depends(get_cancel_transaction_use_case),
) -> TransactionResponse:
    """Cancel one of the caller's transactions."""
    command = CancelTransactionCommand(user_id=user_id, transaction_id=transaction_id)
    result = use_case.execute(command)
    return TransactionResponse.model_validate(result)


# ── Optimizations ────────────────────────────────────────────────


@router.post(
    "/optimizations",
    response_model=OptimizationOutcomeResponse,
    status_code=201,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Request an optimization",
    description=(
        "Ask the optimization model for recommendations for a portfolio. "
        "At most one optimization per portfolio runs at a time, and a new one "
        "is refused during the cool-off after an applied recommendation."
    ),
)
@limiter.limit(HEAVY_RATE_LIMIT)
def request_optimization(
    request: Request,
    payload: RequestOptimizationRequest,
    user_id: str = Depends(get_current_user_id),
    use_case: RequestOptimizationUseCase = Depends(get_request_optimization_use_case),
) -> OptimizationOutcomeResponse:
    """Request a new optimization for one of the caller's portfolios."""
    command = RequestOptimizationCommand(user_id=user_id, portfolio_id=payload.portfolio_id)
    result = use_case.execute(command)
    return OptimizationOutcomeResponse.model_validate(result)


@router.get(
    "/optimizations",
    response_model=OptimizationHistoryResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Optimization history",
    description=(
        "List a portfolio's optimizations in a time window, newest first. "
        "The window defaults to the last 30 days."
    ),
)
def get_optimization_history(
    portfolio_id: str = Query(..., min_length=1, max_length=ID_MAX_LEN),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    user_id: str = Depends(get_current_user_id),
    use_case: GetOptimizationHistoryUseCase = Depends(get_optimization_history_use_case),
) -> OptimizationHistoryResponse:
    """List optimization records for one of the caller's portfolios."""
    query = OptimizationHistoryQuery(
        user_id=user_id,
        portfolio_id=portfolio_id,
        start=_as_utc(start),
        end=_as_utc(end),
    )
    results = use_case.execute(query)
    return OptimizationHistoryResponse(
        optimizations=[OptimizationRecordResponse.model_validate(r) for r in results]
    )


@router.get(
    "/optimizations/availability",
    response_model=AvailabilityResponse,
    summary="Optimization availability",
    description="Report whether an optimization is running and the remaining cool-off.",
)
def get_optimization_availability(
    portfolio_id: str = Query(..., min_length=1, max_length=ID_MAX_LEN),
    user_id: str = Depends(get_current_user_id),
    use_case: CheckOptimizationAvailabilityUseCase = Depends(
        get_optimization_availability_use_case
    ),
) -> AvailabilityResponse:
    """Check whether the caller may request an optimization now."""
    query = AvailabilityQuery(user_id=user_id, portfolio_id=portfolio_id)
    result = use_case.execute(query)
    return AvailabilityResponse.model_validate(result)


@router.get(
    "/optimizations/{optimization_id}/status",
    response_model=OptimizationStatusResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Optimization status",
    description="Return the lifecycle status of one of the caller's optimizations.",
)
def get_optimization_status(
    optimization_id: str,
    user_id: str = Depends(get_current_user_id),
    use_case: GetOptimizationStatusUseCase = Depends(get_optimization_status_use_case),
) -> OptimizationStatusResponse:
    """Get the status of an optimization."""
    query = OptimizationQuery(user_id=user_id, optimization_id=optimization_id)
    result = use_case.execute(query)
    return OptimizationStatusResponse.model_validate(result)


@router.post(
    "/optimizations/{optimization_id}/apply",
    response_model=OptimizationOutcomeResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Apply an optimization",
    description=(
        "Move the portfolio's holdings to the recommended target quantities. "
        "All holdings change or none do."
    ),
)
def apply_optimization(
    optimization_id: str,
    user_id: str = Depends(get_current_user_id),
    use_case: ApplyOptimizationUseCase = Depends(get_apply_optimization_use_case),
) -> OptimizationOutcomeResponse:
    """Apply the recommendations of a created optimization."""
    query = OptimizationQuery(user_id=user_id, optimization_id=optimization_id)
    result = use_case.execute(query)
    return OptimizationOutcomeResponse.model_validate(result)


@router.post(
    "/optimizations/{optimization_id}/cancel",
    response_model=OptimizationRecordResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Cancel an optimization",
    description="Cancel an optimization that is running or awaiting application.",
)
def cancel_optimization(
    optimization_id: str,
    user_id: str = Depends(get_current_user_id),
    use_case: CancelOptimizationUseCase = Depends(get_cancel_optimization_use_case),
) -> OptimizationRecordResponse:
    """Cancel one of the caller's optimizations."""
    query = OptimizationQuery(user_id=user_id, optimization_id=optimization_id)
    result = use_case.execute(query)
    return OptimizationRecordResponse.model_validate(result)


# ── Models ───────────────────────────────────────────────────────


@router.get(
    "/models/health",
    response_model=ModelHealthResponse,
    summary="Model health",
    description="Check every registered model service.",
)
@limiter.limit(HEAVY_RATE_LIMIT)
def get_model_health(
    request: Request,
    use_case: CheckModelHealthUseCase = Depends(get_check_model_health_use_case),
) -> ModelHealthResponse:
    """Report the health of the model services."""
    result = use_case.execute()
    return ModelHealthResponse(
        all_healthy=result.all_healthy,
        models=[ModelHealthItemSchema.model_validate(m) for m in result.models],
    )


@router.post(
    "/models/{model}/retrain",
    response_model=RetrainModelResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Retrain a model",
    description=(
        "Ask a prediction model service to retrain. "
        "``requested`` is false when the service did not accept the request."
    ),
)
@limiter.limit(HEAVY_RATE_LIMIT)
def retrain_model(
    request: Request,
    model: str,
    use_case: RetrainModelUseCase = Depends(get_retrain_model_use_case),
) -> RetrainModelResponse:
    """Forward a retraining request to a prediction model."""
    result = use_case.execute(RetrainModelCommand(model=model))
    return RetrainModelResponse.model_validate(result)
