"""
Shared rate limiting configuration.

One SlowAPI limiter for the app and all routers. Requests are keyed by client
address; webhook routes carry their own, higher limits since every delivery
from a provider arrives from the same few addresses.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=["1000/hour"])

rate_limit_exception = RateLimitExceeded


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Reject a throttled request with 429 in the app's error format."""
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)} on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded: {exc.detail}"},
    )
