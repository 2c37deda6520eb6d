"""
Sliding-window rate limiting per client address.

Each client keeps a log of request timestamps; a request is admitted when fewer
than ``max_requests`` timestamps fall inside the trailing window.
"""

import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

from portfolio_api.logging_config import get_logger

logger = get_logger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: float


class SlidingWindowRateLimiter:
    """Timestamp-log limiter. Not thread-safe; used from a single event loop."""

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}

    def _prune(self, key: str, now: float) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            hits = self._hits[key] = deque()
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def hit(self, key: str) -> RateLimitDecision:
        now = self._clock()
        hits = self._prune(key, now)

        if len(hits) >= self.max_requests:
            retry_after = hits[0] + self.window_seconds - now
            return RateLimitDecision(False, self.max_requests, 0, max(retry_after, 0.0))

        hits.append(now)
        self._evict_idle(now)
        return RateLimitDecision(True, self.max_requests, self.max_requests - len(hits), 0.0)

    def _evict_idle(self, now: float) -> None:
        # bound memory by dropping clients whose whole log has expired
        if len(self._hits) <= 10000:
            return
        cutoff = now - self.window_seconds
        for key in [k for k, v in self._hits.items() if not v or v[-1] <= cutoff]:
            del self._hits[key]

    def reset(self) -> None:
        self._hits.clear()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a ``SlidingWindowRateLimiter`` keyed by the client address."""

    def __init__(self, app, limiter: SlidingWindowRateLimiter):
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_key = request.client.host if request.client else "unknown"
        decision = self.limiter.hit(client_key)

        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded",
                client=client_key,
                path=request.url.path,
                method=request.method,
                limit=decision.limit
            )
            response = PlainTextResponse(RATE_LIMIT_MESSAGE, status_code=429)
            response.headers["Retry-After"] = str(math.ceil(decision.retry_after))
        else:
            response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
