"""
Bounded exponential backoff shared by the fetch, persist and notify call sites.

Each call site supplies its own classification of which failures are worth
another attempt. Timeouts always are.

Usage:
    policy = RetryPolicy(max_attempts=5, base_delay=2.0, multiplier=2.0, max_delay=60.0)
    roster = await policy.call(
        source.fetch,
        operation="fetch roster",
        is_retryable=lambda e: isinstance(e, FetchError) and e.retryable,
        timeout=30.0,
        stop=stop_event,
    )
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .errors import RetryExhaustedError

logger = logging.getLogger(__name__)


async def sleep_or_stop(delay: float, stop: Optional[asyncio.Event]) -> bool:
    """
    Sleep for ``delay`` seconds or until ``stop`` is set.

    Returns:
        True if the stop event fired during (or before) the wait
    """
    if stop is None:
        await asyncio.sleep(delay)
        return False
    if stop.is_set():
        return True
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Max attempts, base delay, multiplier and cap for one call site."""

    max_attempts: int = 5
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after the given (1-based) failed attempt."""
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay)

    async def call(
        self,
        func: Callable[[], Awaitable[Any]],
        *,
        operation: str,
        is_retryable: Callable[[Exception], bool],
        timeout: Optional[float] = None,
        stop: Optional[asyncio.Event] = None,
        on_backoff: Optional[Callable[[int, float], None]] = None,
    ) -> Any:
        """
        Await ``func()`` until it succeeds or the policy is exhausted.

        Non-retryable exceptions propagate unchanged on first occurrence.
        When the failure carries a ``retry_after`` (rate limiting), the backoff
        is at least that long.

        Raises:
            RetryExhaustedError: attempts ran out, or ``stop`` was set before
                another attempt could be made
        """
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                if timeout is None:
                    return await func()
                return await asyncio.wait_for(func(), timeout=timeout)
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(f"{operation} timed out after {timeout}s (attempt {attempt})")
            except Exception as e:
                if not is_retryable(e):
                    raise
                last_error = e
                logger.warning(f"{operation} failed (attempt {attempt}): {e}")

            if attempt == self.max_attempts:
                break

            if stop is not None and stop.is_set():
                raise RetryExhaustedError(operation, attempt, last_error, aborted=True)

            wait = self.delay_for(attempt)
            requested = getattr(last_error, "retry_after", None)
            if requested is not None and requested > wait:
                # Never retry before the upstream's own reset time.
                wait = requested
            if on_backoff is not None:
                on_backoff(attempt, wait)
            logger.info(f"Backing off {wait:.1f}s before retrying {operation}")
            if await sleep_or_stop(wait, stop):
                raise RetryExhaustedError(operation, attempt, last_error, aborted=True)

        raise RetryExhaustedError(operation, self.max_attempts, last_error)
