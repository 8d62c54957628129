"""
Application entry point.

Creates the FastAPI application and wires together:
- Routers (health and the portfolio bounded context)
- Error handlers (centralized domain-to-HTTP mapping)
- Rate limiting
- Logging configuration
- Background scheduler (settlement, valuations, predictions)

No business logic belongs here.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from portfolio_engine.core.config import settings
from portfolio_engine.interfaces.health import router as health_router
from portfolio_engine.interfaces.portfolio.dependencies import (
    build_refresh_predictions_use_case,
    build_refresh_valuations_use_case,
    get_services,
    get_settle_pending_use_case,
)
from portfolio_engine.interfaces.portfolio.router import router as portfolio_router
from portfolio_engine.interfaces.scheduler import SettlementScheduler
from portfolio_engine.shared.errors.handlers import register_error_handlers
from portfolio_engine.shared.logging import configure_logging
from portfolio_engine.shared.security.rate_limiting import (
    limiter,
    rate_limit_exceeded_handler,
)

logger = logging.getLogger(__name__)


def build_scheduler() -> SettlementScheduler:
    """Create the background scheduler on top of the shared services."""
    services = get_services()
    return SettlementScheduler(
        settle_pending=get_settle_pending_use_case(services),
        refresh_valuations=build_refresh_valuations_use_case(services),
        refresh_predictions=build_refresh_predictions_use_case(services),
        prediction_symbols=settings.get_prediction_symbols(),
        timezone_name=settings.market_timezone,
        settlement_interval_seconds=settings.settlement_interval_seconds,
        valuation_refresh_interval_seconds=settings.valuation_refresh_interval_seconds,
        prediction_refresh_hour=settings.prediction_refresh_hour,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: run the background scheduler and close model clients."""
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = build_scheduler()
        scheduler.start()
        app.state.scheduler = scheduler
    else:
        logger.info("Background scheduler disabled.")

    yield

    if scheduler is not None:
        scheduler.stop()
    get_services().registry.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Registers routers, error handlers, and rate limiting.

    Returns:
        A fully configured FastAPI application instance.
    """
    configure_logging(level=settings.log_level)

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # --- Rate Limiting ---
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # --- Error Handlers ---
    register_error_handlers(app)

    # --- Routers ---
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(portfolio_router, prefix="/api/v1")

    return app


app = create_app()
