"""
Fixed-window rate limiting, one limiter per scope.

Two scopes exist: the global limiter that sees every request, and an
optional limiter per proxy rule that only sees requests under the rule's
path prefix. Counters are in memory and keyed by client address.
"""

import math
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse

from frontdoor.errors import RateLimitExceeded

GLOBAL_WINDOW_MS = int(os.getenv("FRONTDOOR_RATE_LIMIT_WINDOW_MS", str(15 * 60 * 1000)))
GLOBAL_MAX_REQUESTS = int(os.getenv("FRONTDOOR_RATE_LIMIT_MAX", "1000"))

GLOBAL_SCOPE = "global"
RULE_SCOPE = "rule"

GLOBAL_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."
RULE_LIMIT_MESSAGE = "Too many requests to {path} from this IP, please try again later."


@dataclass
class RateLimitBucket:
    count: int
    window_start: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float

    def __bool__(self) -> bool:
        return self.allowed

    @property
    def retry_after(self) -> int:
        return max(1, math.ceil(self.reset_after))


class FixedWindowRateLimiter:
    """
    Count requests per client inside fixed windows of window_ms.

    A client's window starts with its first request and resets once
    window_ms has elapsed. The increment happens under a lock so that
    interleaved requests never push a client past max. Expired buckets are
    swept at most once per window while checking, so idle clients do not
    accumulate.
    """

    def __init__(self, window_ms: int, max_requests: int, clock: Callable[[], float] = time.monotonic):
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self.window_ms = window_ms
        self.max = max_requests
        self._window_seconds = window_ms / 1000.0
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: dict[str, RateLimitBucket] = {}
        self._next_sweep = clock() + self._window_seconds

    def check(self, client_id: str) -> RateLimitDecision:
        """Record one request for client_id and say whether it is allowed."""
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._drop_expired(now)
                self._next_sweep = now + self._window_seconds
            bucket = self._buckets.get(client_id)
            if bucket is None or now - bucket.window_start >= self._window_seconds:
                bucket = RateLimitBucket(count=0, window_start=now)
                self._buckets[client_id] = bucket
            bucket.count += 1
            count = bucket.count
            reset_after = bucket.window_start + self._window_seconds - now

        return RateLimitDecision(
            allowed=count <= self.max,
            limit=self.max,
            remaining=max(0, self.max - count),
            reset_after=reset_after,
        )

    def reset(self, client_id: str | None = None) -> None:
        """Forget counters for one client, or for all of them."""
        with self._lock:
            if client_id is None:
                self._buckets.clear()
            else:
                self._buckets.pop(client_id, None)

    def prune(self) -> int:
        """Drop buckets whose window has ended. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            return self._drop_expired(now)

    def _drop_expired(self, now: float) -> int:
        expired = [key for key, b in self._buckets.items() if now - b.window_start >= self._window_seconds]
        for key in expired:
            del self._buckets[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._buckets)


def make_limiter(window_ms: int, max_requests: int, clock: Callable[[], float] = time.monotonic) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(window_ms, max_requests, clock=clock)


def make_global_limiter(clock: Callable[[], float] = time.monotonic) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(GLOBAL_WINDOW_MS, GLOBAL_MAX_REQUESTS, clock=clock)


def client_identity(request: Request) -> str:
    """Key used for rate limit buckets: the peer address."""
    return request.client.host if request.client else "unknown"


def enforce(limiter: FixedWindowRateLimiter, request: Request, scope: str, path: str | None = None) -> RateLimitDecision:
    """
    Run the limiter for this request.

    Raises:
        RateLimitExceeded: with a message that names the scope that denied it
    """
    decision = limiter.check(client_identity(request))
    if not decision:
        if scope == GLOBAL_SCOPE:
            message = GLOBAL_LIMIT_MESSAGE
        else:
            message = RULE_LIMIT_MESSAGE.format(path=path)
        raise RateLimitExceeded(
            scope=scope,
            message=message,
            limit=decision.limit,
            retry_after=decision.retry_after,
            path=path,
        )
    return decision


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.retry_after),
    }


def rate_limited_response(exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        exc.to_dict(),
        status_code=429,
        headers={
            "Retry-After": str(exc.retry_after),
            "X-RateLimit-Limit": str(exc.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(exc.retry_after),
        },
    )
