"""Token-bucket throttle for outbound SendPulse requests."""

from __future__ import annotations

import asyncio
import time
from typing import Callable

import structlog

logger = structlog.get_logger()

# Upper bound on refill/wait rounds for one acquire() call
_MAX_WAIT_ROUNDS = 10_000


class RateLimiterClosedError(Exception):
    """Raised to waiters when the limiter is shut down."""


class RateLimiter:
    """Token bucket: ``max_requests`` per ``window_seconds``, at most ``burst_size`` banked.

    Tokens regenerate continuously at ``max_requests / window_seconds`` per
    second.  Every acquire() refills first, then either consumes a token or
    sleeps for exactly the time one token needs to regenerate and tries again.
    Refill and consume happen without an intervening await, so concurrent
    callers on the same event loop never double-spend a token.
    """

    def __init__(
        self,
        max_requests: int = 80,
        window_seconds: float = 1.0,
        burst_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests <= 0 or window_seconds <= 0 or burst_size <= 0:
            raise ValueError("max_requests, window_seconds and burst_size must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.burst_size = burst_size
        self._clock = clock
        self._tokens = float(burst_size)
        self._last_refill = clock()
        self._closed = asyncio.Event()
        self._total_acquired = 0
        self._total_waits = 0

    @property
    def refill_rate(self) -> float:
        """Tokens per second."""
        return self.max_requests / self.window_seconds

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._last_refill, 0.0)
        if elapsed > 0:
            self._tokens = min(float(self.burst_size), self._tokens + elapsed * self.refill_rate)
            self._last_refill = now

    def _try_consume(self) -> float:
        """Consume a token if one exists; otherwise return the seconds to wait."""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            self._total_acquired += 1
            return 0.0
        return (1 - self._tokens) / self.refill_rate

    async def acquire(self) -> None:
        """Wait until a token is available and consume it."""
        for _ in range(_MAX_WAIT_ROUNDS):
            if self._closed.is_set():
                raise RateLimiterClosedError("Rate limiter is closed")

            wait = self._try_consume()
            if wait == 0:
                return

            self._total_waits += 1
            logger.debug("rate_limit_wait", wait_seconds=round(wait, 4), tokens=round(self._tokens, 3))
            try:
                await asyncio.wait_for(self._closed.wait(), timeout=wait)
            except asyncio.TimeoutError:
                continue
            raise RateLimiterClosedError("Rate limiter is closed")

        raise RuntimeError(f"Rate limiter: no token after {_MAX_WAIT_ROUNDS} waits")

    def can_acquire(self) -> bool:
        """True if a token is available right now (does not consume)."""
        self._refill()
        return self._tokens >= 1

    def available_tokens(self) -> float:
        self._refill()
        return self._tokens

    def stats(self) -> dict:
        self._refill()
        return {
            "available_tokens": round(self._tokens, 3),
            "burst_size": self.burst_size,
            "refill_rate": self.refill_rate,
            "total_acquired": self._total_acquired,
            "total_waits": self._total_waits,
            "closed": self._closed.is_set(),
        }

    def reset(self) -> None:
        """Refill the bucket to burst size."""
        self._tokens = float(self.burst_size)
        self._last_refill = self._clock()

    def close(self) -> None:
        """Abort current and future waiters."""
        self._closed.set()
        logger.info("rate_limiter_closed", total_acquired=self._total_acquired)
