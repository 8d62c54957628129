"""
Centralized error handlers for FastAPI.

Maps domain-specific errors to HTTP responses by their ErrorKind.
No stack traces or internal details are exposed to clients.
All error responses use the ErrorResponse schema.
"""

import logging
import math
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from portfolio_engine.domain.portfolio.errors import (
    CoolOffActiveError,
    ErrorKind,
    PortfolioDomainError,
)

logger = logging.getLogger(__name__)

HTTP_400 = 400
HTTP_404 = 404
HTTP_409 = 409
HTTP_422 = 422
HTTP_500 = 500
HTTP_502 = 502
HTTP_503 = 503

KIND_TO_HTTP: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.VALIDATION: (HTTP_422, "Validation error"),
    ErrorKind.NOT_FOUND: (HTTP_404, "Not found"),
    ErrorKind.CONFLICT: (HTTP_409, "Conflict"),
    ErrorKind.INVALID_STATE: (HTTP_409, "Invalid state"),
    ErrorKind.INSUFFICIENT_HOLDINGS: (HTTP_400, "Insufficient holdings"),
    ErrorKind.PRICE_UNAVAILABLE: (HTTP_503, "Price unavailable"),
    ErrorKind.PROVIDER: (HTTP_502, "Provider error"),
}


def _error_response(
    status_code: int,
    error: str,
    detail: str | None = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: dict[str, str | None] = {"error": error}
    if detail:
        body["detail"] = detail
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    """Register all domain error handlers on the FastAPI application.

    Args:
        app: The FastAPI application instance.
    """

    @app.exception_handler(CoolOffActiveError)
    async def handle_cool_off(
        _request: Request, exc: CoolOffActiveError
    ) -> JSONResponse:
        """Handle cool-off conflicts, telling the client when to retry."""
        logger.warning("Cool-off active: %s", exc.portfolio_id)
        retry_after = math.ceil(exc.remaining.total_seconds())
        return _error_response(
            HTTP_409,
            "Conflict",
            exc.message,
            headers={"Retry-After": str(retry_after)},
        )

    @app.exception_handler(PortfolioDomainError)
    async def handle_portfolio_domain(
        _request: Request, exc: PortfolioDomainError
    ) -> JSONResponse:
        """Map any portfolio domain error to its HTTP status."""
        mapped = KIND_TO_HTTP.get(exc.kind)
        if mapped is None:
            logger.error("Unmapped portfolio domain error: %s", exc.message)
            return _error_response(HTTP_500, "Internal server error")

        status_code, title = mapped
        if status_code >= HTTP_500:
            logger.error("%s: %s", title, exc.message)
        else:
            logger.warning("%s: %s", title, exc.message)
        return _error_response(status_code, title, exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected(
        _request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unexpected errors. Never exposes internals."""
        logger.exception("Unexpected error: %s", type(exc).__name__)
        return _error_response(HTTP_500, "Internal server error")
