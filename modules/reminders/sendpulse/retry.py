"""Exponential backoff with jitter for transient provider failures."""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import httpx
import structlog

from modules.reminders.sendpulse.errors import (
    RETRYABLE_STATUS_CODES,
    ProviderError,
    ProviderRateLimitError,
)

logger = structlog.get_logger()

T = TypeVar("T")

# errno-style codes raised by socket layers for transient network trouble
RETRYABLE_ERROR_CODES = frozenset(
    {"ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "ENETUNREACH", "EAI_AGAIN"}
)

# Per-operation history is trimmed to the most recent operations
_MAX_TRACKED_OPERATIONS = 500


class RetryAbortedError(Exception):
    """Raised when the manager is closed while waiting between attempts."""


@dataclass
class RetryAttempt:
    attempt: int
    error: str
    delay: float
    timestamp: float = field(default_factory=time.time)


def is_retryable(error: BaseException) -> bool:
    """Classify an error as transient (retry) or permanent (propagate)."""
    if isinstance(error, ProviderError):
        if error.retryable:
            return True
        return error.status_code in RETRYABLE_STATUS_CODES and type(error) is ProviderError
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    code = getattr(error, "code", None) or getattr(error, "errno_name", None)
    if isinstance(code, str) and code in RETRYABLE_ERROR_CODES:
        return True
    return False


class RetryManager:
    """Runs an async callable, retrying transient failures up to ``max_retries`` times."""

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_multiplier: float = 2.0,
        jitter: float = 0.25,
        rng: Callable[[], float] = random.random,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter
        self._rng = rng
        self._attempts: dict[str, list[RetryAttempt]] = {}
        self._closed = asyncio.Event()
        self._total_retries = 0
        self._total_failures = 0

    def compute_delay(self, attempt: int, error: BaseException | None = None) -> float:
        """Delay before retry number ``attempt + 1`` (attempt is zero-based)."""
        delay = self.initial_delay * (self.backoff_multiplier ** attempt)
        # +/- jitter around the nominal delay
        delay += delay * self.jitter * 2 * (self._rng() - 0.5)
        if isinstance(error, ProviderRateLimitError) and error.retry_after:
            delay = max(delay, error.retry_after)
        return max(0.0, min(delay, self.max_delay))

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        operation_id: str | None = None,
    ) -> T:
        """Call ``fn`` until it succeeds, fails permanently, or attempts run out.

        Makes at most ``max_retries + 1`` calls; the last error propagates.
        """
        op = operation_id or f"op_{time.monotonic_ns()}"
        last_error: BaseException | None = None

        for attempt in range(self.max_retries + 1):
            if self._closed.is_set():
                raise RetryAbortedError(f"Retry manager closed before attempt {attempt + 1}")
            try:
                result = await fn()
            except Exception as e:
                last_error = e
                if not is_retryable(e):
                    self._total_failures += 1
                    logger.debug("retry_not_retryable", operation=op, error=str(e))
                    raise
                if attempt >= self.max_retries:
                    break

                delay = self.compute_delay(attempt, e)
                self._record(op, RetryAttempt(attempt=attempt + 1, error=str(e), delay=delay))
                self._total_retries += 1
                logger.warning(
                    "retry_scheduled",
                    operation=op,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay_seconds=round(delay, 3),
                    error=str(e),
                )
                await self._wait(delay)
                continue

            if attempt > 0:
                logger.info("retry_succeeded", operation=op, attempts=attempt + 1)
            self._attempts.pop(op, None)
            return result

        self._total_failures += 1
        logger.error(
            "retry_exhausted",
            operation=op,
            attempts=self.max_retries + 1,
            error=str(last_error),
        )
        raise last_error  # type: ignore[misc]

    def wrap(self, fn: Callable[..., Awaitable[T]], operation_id: str | None = None) -> Callable[..., Awaitable[T]]:
        """Return a coroutine function that runs ``fn`` through execute()."""

        async def _wrapped(*args: Any, **kwargs: Any) -> T:
            return await self.execute(lambda: fn(*args, **kwargs), operation_id)

        return _wrapped

    async def _wait(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise RetryAbortedError("Retry manager closed while waiting")

    def _record(self, operation_id: str, attempt: RetryAttempt) -> None:
        if operation_id not in self._attempts and len(self._attempts) >= _MAX_TRACKED_OPERATIONS:
            self._attempts.pop(next(iter(self._attempts)))
        self._attempts.setdefault(operation_id, []).append(attempt)

    def get_attempts(self, operation_id: str) -> list[RetryAttempt]:
        """Retry history of an operation that has not yet succeeded."""
        return list(self._attempts.get(operation_id, []))

    def clear(self, operation_id: str | None = None) -> None:
        if operation_id is None:
            self._attempts.clear()
        else:
            self._attempts.pop(operation_id, None)

    def stats(self) -> dict:
        return {
            "tracked_operations": len(self._attempts),
            "total_retries": self._total_retries,
            "total_failures": self._total_failures,
            "max_retries": self.max_retries,
        }

    def close(self) -> None:
        """Abort pending backoff waits."""
        self._closed.set()
