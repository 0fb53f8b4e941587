from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shopfront.core import config
from shopfront.core.errors import error_body
from shopfront.core.rate_limiter import RateLimiterService, RateLimitRule, SlidingWindowLimiter
from shopfront.core.request_context import client_key

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

BUCKET_AUTH = "auth"
BUCKET_WRITE = "write"
BUCKET_READ = "read"

_MESSAGES = {
    BUCKET_AUTH: "Too many authentication attempts, please try again later.",
    BUCKET_WRITE: "Too many write requests, please slow down.",
    BUCKET_READ: "Too many read requests, please try again later.",
}


def default_limiter() -> RateLimiterService:
    window = config.RATE_LIMIT_WINDOW_SECONDS
    return SlidingWindowLimiter(
        {
            BUCKET_AUTH: RateLimitRule(config.RATE_LIMIT_AUTH_MAX, window),
            BUCKET_WRITE: RateLimitRule(config.RATE_LIMIT_WRITE_MAX, window),
            BUCKET_READ: RateLimitRule(config.RATE_LIMIT_READ_MAX, window),
        }
    )


def classify_request(method: str, path: str) -> str | None:
    if path.startswith(f"{config.API_PREFIX}/auth"):
        return BUCKET_AUTH
    if method.upper() in WRITE_METHODS:
        return BUCKET_WRITE
    if method.upper() == "GET":
        return BUCKET_READ
    return None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client tiers: strict on auth routes, moderate on writes, relaxed on reads."""

    def __init__(
        self,
        app,
        *,
        limiter: RateLimiterService | None = None,
        enabled: bool | None = None,
    ) -> None:
        super().__init__(app)
        self._limiter = limiter or default_limiter()
        self._enabled = config.RATE_LIMIT_ENABLED if enabled is None else enabled

    async def dispatch(self, request: Request, call_next):
        bucket = classify_request(request.method, request.url.path)
        if not self._enabled or bucket is None or not self._limiter.limits(bucket):
            return await call_next(request)

        decision = self._limiter.check(key=client_key(request), bucket=bucket)
        if not decision.allowed:
            return JSONResponse(
                status_code=429,
                content=error_body(_MESSAGES[bucket]),
                headers={
                    "Retry-After": str(decision.retry_after_seconds),
                    "X-RateLimit-Limit": str(decision.limit),
                    "X-RateLimit-Remaining": str(decision.remaining),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
