"""
Per-client admission control for the ABG Interpreter endpoints.

Every endpoint that reaches Gemini costs quota, so each gets its own
sliding-window budget per client IP. Polling ``/check-status`` is cheap and
gets a much larger budget than submitting work.
"""

import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Tuple

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int = 10
    window_seconds: int = 60


# Gemini image calls < interpretation calls < status polls
ENDPOINT_LIMITS: Dict[str, RateLimitConfig] = {
    "ocr": RateLimitConfig(max_requests=10),
    "start-ocr": RateLimitConfig(max_requests=10),
    "analyze": RateLimitConfig(max_requests=15),
    "start-analysis": RateLimitConfig(max_requests=15),
    "check-status": RateLimitConfig(max_requests=120),
}


class RateLimiter:
    """Sliding window counter keyed by client identifier."""

    def __init__(self, max_requests: int = 10, window_seconds: int = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, Deque[float]] = defaultdict(deque)

    def is_allowed(self, identifier: str) -> Tuple[bool, int, int]:
        """Record a request if there is room.

        Returns:
            (allowed, remaining, retry_after_seconds); retry_after is 0 when allowed
        """
        now = time.monotonic()
        stamps = self.requests[identifier]
        while stamps and stamps[0] <= now - self.window_seconds:
            stamps.popleft()

        if len(stamps) >= self.max_requests:
            retry_after = int(stamps[0] + self.window_seconds - now) + 1
            return False, 0, retry_after

        stamps.append(now)
        return True, self.max_requests - len(stamps), 0

    def reset(self, identifier: str) -> None:
        self.requests.pop(identifier, None)


def client_identifier(request: Request) -> str:
    """First X-Forwarded-For hop when behind a proxy, else the socket peer."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimitManager:
    """One RateLimiter per endpoint, created lazily from ENDPOINT_LIMITS."""

    def __init__(self):
        self.limiters: Dict[str, RateLimiter] = {}

    def get_limiter(self, endpoint: str) -> RateLimiter:
        if endpoint not in self.limiters:
            config = ENDPOINT_LIMITS.get(endpoint, RateLimitConfig())
            self.limiters[endpoint] = RateLimiter(config.max_requests, config.window_seconds)
        return self.limiters[endpoint]

    def reset_all(self) -> None:
        self.limiters.clear()

    def check_rate_limit(self, endpoint: str, request: Request) -> Tuple[bool, Dict[str, str]]:
        """Admit or reject one request.

        Returns:
            (True, X-RateLimit-* headers for the response)

        Raises:
            HTTPException: 429 with Retry-After when the budget is spent
        """
        limiter = self.get_limiter(endpoint)
        client = client_identifier(request)
        allowed, remaining, retry_after = limiter.is_allowed(client)

        headers = {
            "X-RateLimit-Limit": str(limiter.max_requests),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Window": str(limiter.window_seconds),
        }
        if allowed:
            return True, headers

        headers["Retry-After"] = str(retry_after)
        logger.warning(
            f"Rate limit hit on {endpoint} by {client} "
            f"({limiter.max_requests}/{limiter.window_seconds}s), retry in {retry_after}s"
        )
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers=headers,
        )


rate_limit_manager = RateLimitManager()


def check_rate_limit(endpoint: str, request: Request) -> Dict[str, str]:
    """Module-level shortcut used by the routes; returns the headers to attach."""
    _, headers = rate_limit_manager.check_rate_limit(endpoint, request)
    return headers
