"""Rate limiting for long-running bulk endpoints using SlowAPI."""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from jobwatch.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def bulk_limit() -> str:
    """Limit string applied to bulk archive/retry/cleanup endpoints."""
    return get_settings().bulk_rate_limit


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Custom handler for rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please try again later."},
    )
