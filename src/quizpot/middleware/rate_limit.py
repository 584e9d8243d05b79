"""Per-client fixed window request limiting backed by Redis counters."""

import time

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from quizpot.redis_client import get_redis_or_none

logger = structlog.get_logger()

# Probes must keep answering under load
_EXEMPT_PATHS = frozenset({"/health", "/ready", "/version"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    """At most ``requests_per_window`` requests per client IP and window.

    Without Redis (not started, or unreachable) requests pass unlimited.
    """

    def __init__(self, app: ASGIApp, requests_per_window: int = 100, window_seconds: int = 60) -> None:
        super().__init__(app)
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds

    def _limit_headers(self, remaining: int) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.requests_per_window),
            "X-RateLimit-Remaining": str(max(0, remaining)),
        }

    async def _hit(self, client: str, now: int) -> int | None:
        redis = get_redis_or_none()
        if redis is None:
            return None
        key = f"ratelimit:{client}:{now // self.window_seconds}"
        pipe = redis.pipeline()
        pipe.incr(key)
        pipe.expire(key, self.window_seconds + 1)
        count, _ = await pipe.execute()
        return int(count)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        now = int(time.time())
        try:
            count = await self._hit(client, now)
        except RedisError:
            logger.warning("rate_limit_unavailable", path=request.url.path, exc_info=True)
            count = None
        if count is None:
            return await call_next(request)

        if count > self.requests_per_window:
            retry_after = self.window_seconds - now % self.window_seconds
            logger.info("rate_limited", client=client, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later.", "code": "RATE_LIMITED"},
                headers={"Retry-After": str(retry_after), **self._limit_headers(0)},
            )

        response = await call_next(request)
        response.headers.update(self._limit_headers(self.requests_per_window - count))
        return response
