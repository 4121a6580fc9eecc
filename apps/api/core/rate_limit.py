"""
Rate Limiting Middleware

Fixed-window counters in Redis, keyed by caller and path. A caller is the
user id in a valid bearer token, otherwise the client IP. Login and
registration get the tightest budget; everything that moves money is next.

Fails open: without Redis every request is allowed.
"""
import logging
import time
from typing import NamedTuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from core.cache import get_redis_client
from core.config import settings
from core.security import decode_access_token

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/health", "/ping", "/docs", "/openapi.json", "/redoc"})

# Requests per window, matched on whole path segments
PATH_LIMITS = (
    ("/auth/login", 10),
    ("/auth/register", 10),
    ("/payments", 20),
    ("/goals", 30),
    ("/admin", 50),
)


class RateWindow(NamedTuple):
    allowed: bool
    limit: int
    remaining: int
    reset_at: int

    def headers(self) -> dict:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


class RateLimitMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, default_limit: int = 60, window: int = 60):
        super().__init__(app)
        self.default_limit = default_limit
        self.window = window

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if (
            not settings.RATE_LIMIT_ENABLED
            or path in EXEMPT_PATHS
            or path.startswith(settings.UPLOAD_URL_PREFIX)
        ):
            return await call_next(request)

        result = self._consume(self._get_caller_id(request), path, self._get_endpoint_limit(path))

        if not result.allowed:
            headers = result.headers()
            headers["Retry-After"] = str(max(0, int(result.reset_at - time.time())))
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "message": "Rate limit exceeded",
                    "error_code": "RATE_LIMITED",
                    "limit": result.limit,
                    "window": self.window,
                    "reset_at": result.reset_at,
                },
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(result.headers())
        return response

    def _get_caller_id(self, request: Request) -> str:
        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme == "Bearer" and token:
            payload = decode_access_token(token)
            if payload and payload.get("sub"):
                return f"user:{payload['sub']}"
        return f"ip:{request.client.host if request.client else 'unknown'}"

    def _get_endpoint_limit(self, path: str) -> int:
        for prefix, limit in PATH_LIMITS:
            if path == prefix or path.startswith(prefix + "/"):
                return limit
        return self.default_limit

    def _consume(self, caller: str, path: str, limit: int) -> RateWindow:
        now = int(time.time())
        open_window = RateWindow(True, limit, limit, now + self.window)

        redis_client = get_redis_client()
        if redis_client is None:
            return open_window

        key = f"rate_limit:{caller}:{path}"
        try:
            count = redis_client.incr(key)
            if count == 1:
                redis_client.expire(key, self.window)
            ttl = redis_client.ttl(key)
        except RedisError as e:
            logger.error(f"Rate limit check error: {e}")
            return open_window

        reset_at = now + (ttl if ttl > 0 else self.window)
        if count > limit:
            return RateWindow(False, limit, 0, reset_at)
        return RateWindow(True, limit, limit - count, reset_at)
