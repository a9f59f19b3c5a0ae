"""Rate limiting middleware: Redis-based per-minute window.

Learn: Each client IP gets a counter key like
"trivedia:rl:{ip}:{bucket}:{minute}" that Redis increments atomically,
so every instance behind the load balancer shares the same count.
Login and registration get a stricter bucket (10/min by default) to slow
down password guessing; everything else under /api shares the default.

If Redis is unreachable the request goes through unlimited.
"""

import time

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from trivedia.errors import envelope

logger = structlog.get_logger()

AUTH_PATHS = ("/api/auth/login", "/api/auth/register")
WINDOW_SECONDS = 60


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP request limits, counted in Redis."""

    def __init__(self, app, redis, default_rpm: int = 100, auth_rpm: int = 10):
        super().__init__(app)
        self.redis = redis
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if not path.startswith("/api/"):
            return await call_next(request)

        is_auth = path.startswith(AUTH_PATHS)
        rpm = self.auth_rpm if is_auth else self.default_rpm
        bucket = "auth" if is_auth else "api"
        client_ip = request.client.host if request.client else "unknown"

        window = int(time.time() // WINDOW_SECONDS)
        key = f"trivedia:rl:{client_ip}:{bucket}:{window}"

        try:
            count = await self.redis.incr(key)
            if count == 1:
                await self.redis.expire(key, WINDOW_SECONDS * 2)
        except (RedisError, OSError) as e:
            logger.debug("ratelimit.skipped", error=str(e))
            return await call_next(request)

        if count > rpm:
            logger.warning(
                "ratelimit.exceeded",
                client_ip=client_ip,
                bucket=bucket,
                path=path,
            )
            return JSONResponse(
                status_code=429,
                content=envelope(
                    False,
                    message="Too many requests, please try again later.",
                    error="TooManyRequests",
                ),
                headers={"Retry-After": str(WINDOW_SECONDS)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
