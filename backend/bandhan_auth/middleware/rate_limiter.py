"""
IP Rate Limiting Middleware
Coarse per-IP token bucket in front of every route. Per-phone OTP limits
live in the OTP ledger, in the database, and hold across processes.
"""
import time
from typing import Dict, Tuple
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from bandhan_auth.config import settings
from bandhan_auth.errors import ErrorCode


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Token bucket per client IP: RATE_LIMIT_REQUESTS per RATE_LIMIT_WINDOW_SECONDS
    """

    EXEMPT_PATHS = {"/health", "/", "/docs", "/redoc", "/openapi.json"}
    MAX_TRACKED_CLIENTS = 10000

    def __init__(self, app, rate_limit: int = None, window: int = None):
        super().__init__(app)
        self.rate_limit = rate_limit or settings.RATE_LIMIT_REQUESTS
        self.window = window or settings.RATE_LIMIT_WINDOW_SECONDS
        # {ip: (tokens, last_update)}
        self.buckets: Dict[str, Tuple[float, float]] = {}

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        allowed, remaining, retry_after = self._take(client_ip)

        if not allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "error": ErrorCode.RATE_LIMIT_EXCEEDED.value,
                    "message": "Too many requests. Please try again later.",
                    "messageHi": "बहुत अधिक अनुरोध। कृपया बाद में पुनः प्रयास करें।",
                    "details": {"retryAfterSeconds": retry_after},
                },
                headers={
                    "X-RateLimit-Limit": str(self.rate_limit),
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(retry_after),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.rate_limit)
        response.headers["X-RateLimit-Remaining"] = str(int(remaining))
        return response

    def _get_client_ip(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def _take(self, client_ip: str) -> Tuple[bool, float, int]:
        """
        Consume one token for client_ip.
        Returns (allowed, remaining_tokens, retry_after_seconds)
        """
        now = time.monotonic()
        refill_rate = self.rate_limit / self.window
        tokens, last_update = self.buckets.get(client_ip, (float(self.rate_limit), now))
        tokens = min(self.rate_limit, tokens + (now - last_update) * refill_rate)

        if len(self.buckets) >= self.MAX_TRACKED_CLIENTS and client_ip not in self.buckets:
            self._evict_idle(now)

        if tokens >= 1:
            self.buckets[client_ip] = (tokens - 1, now)
            return True, tokens - 1, 0

        self.buckets[client_ip] = (tokens, now)
        return False, 0, max(1, int((1 - tokens) / refill_rate) + 1)

    def _evict_idle(self, now: float):
        """Forget clients whose bucket has fully refilled"""
        cutoff = now - self.window
        for ip in [ip for ip, (_, last) in self.buckets.items() if last < cutoff]:
            del self.buckets[ip]
