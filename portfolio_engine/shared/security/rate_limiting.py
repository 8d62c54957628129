"""
Rate limiting for the portfolio API.

Uses slowapi. Callers are keyed by their X-User-Id header so users
behind one proxy do not share a budget; anonymous calls fall back to
the client address. Limits come from settings.
"""

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from portfolio_engine.core.config import settings

USER_HEADER = "x-user-id"

DEFAULT_RATE_LIMIT = settings.rate_limit_default
HEAVY_RATE_LIMIT = settings.rate_limit_heavy


def rate_limit_key(request: Request) -> str:
    """Key a request by caller identity, or by address when anonymous."""
    user_id = request.headers.get(USER_HEADER)
    if user_id:
        return f"user:{user_id}"
    return f"addr:{get_remote_address(request)}"


limiter = Limiter(key_func=rate_limit_key, default_limits=[DEFAULT_RATE_LIMIT])


async def rate_limit_exceeded_handler(
    _request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Answer 429 with the window length as Retry-After.

    Args:
        _request: The incoming HTTP request.
        exc: The rate limit exceeded exception.

    Returns:
        A 429 JSON response in the ErrorResponse shape.
    """
    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded", "detail": str(exc.detail)},
        headers={"Retry-After": str(exc.limit.limit.get_expiry())},
    )
