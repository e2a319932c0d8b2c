"""Sliding-window request limits for the code request endpoints."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from src.core.kv_store import InMemoryKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of counting one request against a key."""

    allowed: bool
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """Counts requests per key over a sliding window.

    Each key stores the timestamps of its accepted requests that are still
    inside the window. The entry expires one window after it was last
    touched, so idle keys are dropped by the store's sweep.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: int = 60,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
        cleanup_interval_seconds: int = 300,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self.store = store or InMemoryKeyValueStore(
            "rate limit",
            cleanup_interval_seconds=cleanup_interval_seconds,
            clock=clock,
        )

    @classmethod
    def from_settings(cls) -> RateLimiter:
        from src.core.config import get_settings

        settings = get_settings()
        return cls(
            max_requests=settings.rate_limit_otp_requests,
            window_seconds=settings.rate_limit_window_seconds,
            cleanup_interval_seconds=settings.store_cleanup_interval_seconds,
        )

    def hit(
        self,
        key: str,
        max_requests: int | None = None,
        window_seconds: int | None = None,
    ) -> RateLimitDecision:
        """Record a request for ``key`` unless its budget is spent.

        Args:
            key: Client address plus endpoint.
            max_requests: Overrides the limiter's budget.
            window_seconds: Overrides the limiter's window.

        Returns:
            RateLimitDecision: Whether the request may proceed, the requests
            left in the window, and otherwise how many seconds until a slot
            frees up.
        """
        limit = max_requests or self.max_requests
        window = window_seconds or self.window_seconds
        now = self._clock()
        decision = RateLimitDecision(allowed=False, remaining=0)

        def count(timestamps: tuple[float, ...] | None) -> tuple[float, ...]:
            nonlocal decision
            recent = tuple(ts for ts in timestamps or () if ts > now - window)
            if len(recent) >= limit:
                # The slot frees when the oldest request still counted leaves the window
                oldest = recent[-limit]
                decision = RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    retry_after=max(1, math.ceil(oldest + window - now)),
                )
                return recent
            recent += (now,)
            decision = RateLimitDecision(allowed=True, remaining=limit - len(recent))
            return recent

        self.store.update(key, count, ttl_seconds=window)
        if not decision.allowed:
            logger.info("Rate limit hit for %s; retry in %ds", key, decision.retry_after)
        return decision


# Global singleton instance
_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the global rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter.from_settings()
    return _rate_limiter


async def init_rate_limiter() -> RateLimiter:
    """Start the rate limit store sweep. Call at app startup."""
    limiter = get_rate_limiter()
    if isinstance(limiter.store, InMemoryKeyValueStore):
        await limiter.store.start_cleanup_task()
    return limiter


async def shutdown_rate_limiter() -> None:
    """Stop the rate limit store sweep. Call at app shutdown."""
    if _rate_limiter and isinstance(_rate_limiter.store, InMemoryKeyValueStore):
        await _rate_limiter.store.stop_cleanup_task()
