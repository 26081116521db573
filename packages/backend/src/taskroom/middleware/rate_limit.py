"""Rate limiting middleware — Redis-backed fixed window per client IP.

Learn: Each IP gets a counter per minute, keyed like
"taskroom:rl:{ip}:{bucket}:{minute}". Account registration gets its
own, stricter bucket: it's the one unauthenticated-ish write path.

Rate limiting is skipped entirely when Redis isn't available (tests,
local development) or errors mid-request. A broken limiter must never
turn into an outage.
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from taskroom.db.redis import get_redis

logger = structlog.get_logger()

STRICT_PATHS = ("/api/v1/accounts",)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP, per-minute request limits."""

    def __init__(self, app, default_rpm: int = 100, auth_rpm: int = 10):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm

    def bucket_for(self, request: Request) -> tuple[str, int]:
        if request.method == "POST" and request.url.path.rstrip("/") in STRICT_PATHS:
            return "auth", self.auth_rpm
        return "api", self.default_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        bucket, rpm = self.bucket_for(request)
        window = int(time.time() // 60)
        key = f"taskroom:rl:{client_ip}:{bucket}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)
        except Exception as e:
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > rpm:
            logger.info("rate_limit.exceeded", client_ip=client_ip, bucket=bucket)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later.", "code": "RATE_LIMITED"},
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
