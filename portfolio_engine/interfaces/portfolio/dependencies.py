"""
Dependency injection for the portfolio bounded context.

Provides FastAPI dependency functions that wire infrastructure
adapters into use cases via constructor injection.
These are the composition root for the portfolio context.

Stores, locks and clients are process-wide: they are built once by
``get_services`` and shared by every request and scheduler job.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from portfolio_engine.application.portfolio.apply_optimization import (
    ApplyOptimizationUseCase,
)
from portfolio_engine.application.portfolio.cancel_optimization import (
    CancelOptimizationUseCase,
)
from portfolio_engine.application.portfolio.cancel_transaction import (
    CancelTransactionUseCase,
)
from portfolio_engine.application.portfolio.cancel_stale_optimizations import (
    CancelStaleOptimizationsUseCase,
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
from portfolio_engine.application.portfolio.get_optimization_history import (
    GetOptimizationHistoryUseCase,
)
from portfolio_engine.application.portfolio.get_optimization_status import (
    GetOptimizationStatusUseCase,
)
from portfolio_engine.application.portfolio.list_transactions import (
    ListTransactionsUseCase,
)
from portfolio_engine.application.portfolio.refresh_predictions import (
    RefreshPredictionsUseCase,
)
from portfolio_engine.application.portfolio.refresh_valuations import (
    RefreshValuationsUseCase,
)
from portfolio_engine.application.portfolio.request_optimization import (
    RequestOptimizationUseCase,
)
from portfolio_engine.application.portfolio.retrain_model import RetrainModelUseCase
from portfolio_engine.application.portfolio.settle_pending_transactions import (
    SettlePendingTransactionsUseCase,
)
from portfolio_engine.core.config import Settings, settings
from portfolio_engine.domain.portfolio.holdings_ledger import HoldingsLedger
from portfolio_engine.domain.portfolio.model_registry import ModelRegistry
from portfolio_engine.domain.portfolio.optimization_lifecycle import (
    OptimizationLifecycle,
)
from portfolio_engine.domain.portfolio.ports import (
    HoldingRepository,
    MarketOraclePort,
    OptimizationProviderPort,
    OptimizationRepository,
    PortfolioRepository,
    TransactionRepository,
)
from portfolio_engine.domain.portfolio.recommendation_engine import (
    RecommendationApplicationEngine,
)
from portfolio_engine.domain.portfolio.settlement_service import (
    TransactionSettlementService,
)
from portfolio_engine.infrastructure.portfolio.market_oracle import (
    ExchangeMarketOracle,
    InMemoryQuoteSource,
    SqlQuoteSource,
)
from portfolio_engine.infrastructure.portfolio.memory_store import (
    InMemoryHoldingRepository,
    InMemoryOptimizationRepository,
    InMemoryPortfolioRepository,
    InMemoryTransactionRepository,
)
from portfolio_engine.infrastructure.portfolio.model_clients import (
    ApolloClient,
    GaiaClient,
    IgnisClient,
)
from portfolio_engine.infrastructure.portfolio.sql_store import (
    SqlHoldingRepository,
    SqlOptimizationRepository,
    SqlPortfolioRepository,
    SqlTransactionRepository,
    create_schema,
)
from portfolio_engine.shared.concurrency import KeyedLock

logger = logging.getLogger(__name__)


@dataclass
class PortfolioServices:
    """Every long-lived collaborator of the portfolio context."""

    portfolios: PortfolioRepository
    holdings: HoldingRepository
    transactions: TransactionRepository
    optimizations: OptimizationRepository
    oracle: MarketOraclePort
    registry: ModelRegistry
    ledger: HoldingsLedger
    settlement: TransactionSettlementService
    lifecycle: OptimizationLifecycle


def _get_db_engine(database_url: str) -> Engine:
    """Build a SQLAlchemy engine and make sure the schema exists."""
    engine = create_engine(database_url, pool_pre_ping=True)
    create_schema(engine)
    return engine


def build_services(
    config: Settings,
    engine: Optional[Engine] = None,
    oracle: Optional[MarketOraclePort] = None,
    registry: Optional[ModelRegistry] = None,
    provider: Optional[OptimizationProviderPort] = None,
) -> PortfolioServices:
    """Wire the portfolio context from settings.

    SQL stores are used when an engine is given or DATABASE_URL is set,
    in-memory stores otherwise. Any collaborator can be passed in to
    replace the one built from settings.
    """
    if engine is None and config.database_url:
        engine = _get_db_engine(config.database_url)

    if engine is not None:
        portfolios: PortfolioRepository = SqlPortfolioRepository(engine)
        holdings: HoldingRepository = SqlHoldingRepository(engine)
        transactions: TransactionRepository = SqlTransactionRepository(engine)
        optimizations: OptimizationRepository = SqlOptimizationRepository(engine)
        quotes = SqlQuoteSource(engine)
    else:
        portfolios = InMemoryPortfolioRepository()
        holdings = InMemoryHoldingRepository()
        transactions = InMemoryTransactionRepository()
        optimizations = InMemoryOptimizationRepository()
        quotes = InMemoryQuoteSource()

    if oracle is None:
        oracle = ExchangeMarketOracle(
            quotes,
            timezone=config.market_timezone,
            open_time=config.market_open_time,
            close_time=config.market_close_time,
        )

    if registry is None:
        timeout = config.model_request_timeout_seconds
        gaia = GaiaClient(config.gaia_base_url, timeout=timeout)
        registry = ModelRegistry(
            [
                ApolloClient(config.apollo_base_url, timeout=timeout),
                IgnisClient(config.ignis_base_url, timeout=timeout),
                gaia,
            ]
        )
        provider = provider or gaia

    if provider is None:
        raise ValueError("An optimization provider is required with a custom registry")

    locks = KeyedLock()
    ledger = HoldingsLedger(holdings, locks=locks)
    settlement = TransactionSettlementService(
        transactions, portfolios, ledger, oracle, locks=locks
    )
    lifecycle = OptimizationLifecycle(
        optimizations,
        portfolios,
        holdings,
        provider,
        RecommendationApplicationEngine(ledger),
        cool_off=timedelta(hours=config.optimization_cool_off_hours),
        history_window=timedelta(days=config.optimization_history_default_days),
        locks=locks,
    )

    logger.info(
        "Portfolio services built with %s stores",
        "SQL" if engine is not None else "in-memory",
    )
    return PortfolioServices(
        portfolios=portfolios,
        holdings=holdings,
        transactions=transactions,
        optimizations=optimizations,
        oracle=oracle,
        registry=registry,
        ledger=ledger,
        settlement=settlement,
        lifecycle=lifecycle,
    )


@lru_cache(maxsize=1)
def get_services() -> PortfolioServices:
    """Return the process-wide services built from application settings."""
    return build_services(settings)


def get_current_user_id(
    x_user_id: str = Header(..., min_length=1, max_length=64),
) -> str:
    """Read the caller's identity from the X-User-Id header."""
    return x_user_id


# ── Use case factories ───────────────────────────────────────────


def get_create_transaction_use_case(
    services: PortfolioServices = Depends(get_services),
) -> CreateTransactionUseCase:
    """Build CreateTransactionUseCase with its dependencies."""
    return CreateTransactionUseCase(
        transaction_repo=services.transactions,
        portfolio_repo=services.portfolios,
        settlement=services.settlement,
    )


def get_create_recommendation_transaction_use_case(
    services: PortfolioServices = Depends(get_services),
) -> CreateRecommendationTransactionUseCase:
    """Build CreateRecommendationTransactionUseCase with its dependencies."""
    return CreateRecommendationTransactionUseCase(
        transaction_repo=services.transactions,
        portfolio_repo=services.portfolios,
        oracle=services.oracle,
        settlement=services.settlement,
    )


def get_list_transactions_use_case(
    services: PortfolioServices = Depends(get_services),
) -> ListTransactionsUseCase:
    """Build ListTransactionsUseCase with its dependencies."""
    return ListTransactionsUseCase(
        transaction_repo=services.transactions,
        portfolio_repo=services.portfolios,
    )


def get_cancel_transaction_use_case(
    services: PortfolioServices = Depends(get_services),
) -> CancelTransactionUseCase:
    """Build CancelTransactionUseCase with its dependencies."""
    return CancelTransactionUseCase(settlement=services.settlement)


def get_settle_pending_use_case(
    services: PortfolioServices = Depends(get_services),
) -> SettlePendingTransactionsUseCase:
    """Build SettlePendingTransactionsUseCase with its dependencies."""
    return SettlePendingTransactionsUseCase(settlement=services.settlement)


def get_request_optimization_use_case(
    services: PortfolioServices = Depends(get_services),
) -> RequestOptimizationUseCase:
    """Build RequestOptimizationUseCase with its dependencies."""
    return RequestOptimizationUseCase(lifecycle=services.lifecycle)


def get_optimization_status_use_case(
    services: PortfolioServices = Depends(get_services),
) -> GetOptimizationStatusUseCase:
    """Build GetOptimizationStatusUseCase with its dependencies."""
    return GetOptimizationStatusUseCase(lifecycle=services.lifecycle)


def get_optimization_availability_use_case(
    services: PortfolioServices = Depends(get_services),
) -> CheckOptimizationAvailabilityUseCase:
    """Build CheckOptimizationAvailabilityUseCase with its dependencies."""
    return CheckOptimizationAvailabilityUseCase(lifecycle=services.lifecycle)


def get_optimization_history_use_case(
    services: PortfolioServices = Depends(get_services),
) -> GetOptimizationHistoryUseCase:
    """Build GetOptimizationHistoryUseCase with its dependencies."""
    return GetOptimizationHistoryUseCase(lifecycle=services.lifecycle)


def get_apply_optimization_use_case(
    services: PortfolioServices = Depends(get_services),
) -> ApplyOptimizationUseCase:
    """Build ApplyOptimizationUseCase with its dependencies."""
    return ApplyOptimizationUseCase(lifecycle=services.lifecycle)


def get_cancel_optimization_use_case(
    services: PortfolioServices = Depends(get_services),
) -> CancelOptimizationUseCase:
    """Build CancelOptimizationUseCase with its dependencies."""
    return CancelOptimizationUseCase(lifecycle=services.lifecycle)


def get_check_model_health_use_case(
    services: PortfolioServices = Depends(get_services),
) -> CheckModelHealthUseCase:
    """Build CheckModelHealthUseCase with its dependencies."""
    return CheckModelHealthUseCase(registry=services.registry)


def get_retrain_model_use_case(
    services: PortfolioServices = Depends(get_services),
) -> RetrainModelUseCase:
    """Build RetrainModelUseCase with its dependencies."""
    return RetrainModelUseCase(registry=services.registry)


def build_refresh_valuations_use_case(
    services: PortfolioServices,
) -> RefreshValuationsUseCase:
    """Build RefreshValuationsUseCase for the scheduler."""
    return RefreshValuationsUseCase(
        holding_repo=services.holdings,
        ledger=services.ledger,
        oracle=services.oracle,
    )


def build_refresh_predictions_use_case(
    services: PortfolioServices,
) -> RefreshPredictionsUseCase:
    """Build RefreshPredictionsUseCase for the scheduler."""
    return RefreshPredictionsUseCase(
        registry=services.registry,
        cancel_stale=CancelStaleOptimizationsUseCase(lifecycle=services.lifecycle),
    )
