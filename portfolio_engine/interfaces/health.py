"""
Health check router.

Reports the application version, which kind of store backs the
portfolio services and whether the background scheduler is running.
Model service health lives under /portfolio/models/health.
"""

from fastapi import APIRouter, Request

from portfolio_engine.core.config import settings
from portfolio_engine.interfaces.portfolio.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description=(
        "Returns application status and version, the storage backend "
        "(``sql`` or ``memory``) and whether the scheduler is running."
    ),
)
def health_check(request: Request) -> HealthResponse:
    scheduler = getattr(request.app.state, "scheduler", None)
    return HealthResponse(
        status="ok",
        version=settings.version,
        storage="sql" if settings.database_url else "memory",
        scheduler_running=scheduler is not None and scheduler.is_running,
    )
