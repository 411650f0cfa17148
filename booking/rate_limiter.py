"""
Fixed-window rate limiting, partitioned by the caller's token subject.

Counters live in Redis when it is configured so every replica shares them;
otherwise they are kept in process memory.
"""

import logging
import math
import time
from functools import lru_cache
from threading import Lock
from typing import Callable, NamedTuple

import redis
from fastapi import Depends, HTTPException, Request, status

from booking.auth.dependencies import AuthenticatedUser, get_current_user
from booking.cache import get_redis_client
from booking.core import config

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate_limit"
CLEANUP_INTERVAL_SECONDS = 60


class RateLimitDecision(NamedTuple):
    allowed: bool
    count: int
    limit: int
    retry_after: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class InMemoryWindowStore:
    """Process-local counters: {key: [count, window_reset_at]}"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: dict[str, list[float]] = {}
        self._lock = Lock()
        self._last_cleanup = clock()

    def _cleanup_expired(self, now: float) -> None:
        if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]
        self._last_cleanup = now

    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Count one request against ``key``; returns (count in window, seconds until reset)."""
        with self._lock:
            now = self._clock()
            self._cleanup_expired(now)

            entry = self._windows.get(key)
            if entry is None or now >= entry[1]:
                entry = [0, now + window_seconds]
                self._windows[key] = entry

            entry[0] += 1
            return int(entry[0]), max(0, math.ceil(entry[1] - now))


class RedisWindowStore:
    def __init__(self, client: redis.Redis):
        self._client = client

    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        pipe = self._client.pipeline()
        pipe.incr(key)
        pipe.ttl(key)
        count, ttl = pipe.execute()

        # A fresh key (or one that lost its expiry) opens a new window.
        if count == 1 or ttl < 0:
            self._client.expire(key, window_seconds)
            ttl = window_seconds

        return int(count), int(ttl)


class FixedWindowRateLimiter:
    def __init__(self, limit: int, window_seconds: int, store=None):
        self.limit = limit
        self.window_seconds = window_seconds
        self.store = store or InMemoryWindowStore()

    def check(self, partition: str) -> RateLimitDecision:
        key = f"{KEY_PREFIX}:{partition}"
        count, ttl = self.store.hit(key, self.window_seconds)
        return RateLimitDecision(
            allowed=count <= self.limit,
            count=count,
            limit=self.limit,
            retry_after=ttl,
        )


@lru_cache(maxsize=1)
def get_rate_limiter() -> FixedWindowRateLimiter:
    client = get_redis_client()
    store = RedisWindowStore(client) if client is not None else InMemoryWindowStore()
    return FixedWindowRateLimiter(
        limit=config.RATE_LIMIT_REQUESTS,
        window_seconds=config.RATE_LIMIT_WINDOW_SECONDS,
        store=store,
    )


def enforce_rate_limit(
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
) -> None:
    try:
        decision = limiter.check(current_user.subject)
    except redis.RedisError as exc:
        logger.error("Rate limit backend unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limiting service temporarily unavailable.",
        ) from exc

    if not decision.allowed:
        logger.warning(
            "Rate limit exceeded for %s (%s/%s in %ss window)",
            current_user.subject,
            decision.count,
            decision.limit,
            limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Maximum {decision.limit} requests per {limiter.window_seconds} seconds.",
            headers={"Retry-After": str(decision.retry_after)},
        )

    request.state.rate_limit_limit = decision.limit
    request.state.rate_limit_remaining = decision.remaining
