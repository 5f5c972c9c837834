"""Bounded exponential-backoff retry for generation calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from .base import GenerationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_is_retryable(exc: BaseException) -> bool:
    """Timeouts, connection drops, rate limits and retryable GenerationErrors."""
    if isinstance(exc, GenerationError):
        return exc.retryable
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True
    error_str = str(exc).lower()
    return "rate limit" in error_str or "429" in error_str or "too many requests" in error_str


@dataclass(frozen=True)
class RetryPolicy:
    """Delays are in seconds."""
    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0
    is_retryable: Callable[[BaseException], bool] = field(default=default_is_retryable, compare=False)

    def delays(self) -> list[float]:
        """Wait before each retry, in order."""
        out, delay = [], self.initial_delay
        for _ in range(self.max_retries):
            out.append(delay)
            delay = min(delay * self.backoff_multiplier, self.max_delay)
        return out


RETRY_PRESETS: dict[str, RetryPolicy] = {
    "fast": RetryPolicy(max_retries=2, initial_delay=0.5, max_delay=2.0),
    "standard": RetryPolicy(max_retries=3, initial_delay=1.0, max_delay=5.0),
    "patient": RetryPolicy(max_retries=4, initial_delay=2.0, max_delay=10.0),
}


def get_retry_policy(preset: str) -> RetryPolicy:
    try:
        return RETRY_PRESETS[preset]
    except KeyError:
        raise ValueError(f"Unknown retry preset '{preset}'") from None


class RetryExhaustedError(GenerationError):
    """Every attempt failed; last_error is the final failure."""
    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}", retryable=False)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await fn() until it succeeds, retrying while attempts remain and the
    policy accepts the error.

    fn must build a fresh awaitable on every call.

    Raises:
        The original error when it is not retryable
        RetryExhaustedError: when retries run out
    """
    policy = policy or RETRY_PRESETS["standard"]
    delays = policy.delays()

    for attempt in range(policy.max_retries + 1):
        try:
            return await fn()
        except Exception as e:
            if not policy.is_retryable(e):
                raise
            if attempt == policy.max_retries:
                raise RetryExhaustedError(attempt + 1, e) from e
            wait = delays[attempt]
            logger.warning(
                f"Generation failed (attempt {attempt + 1}/{policy.max_retries + 1}), "
                f"retrying in {wait:.1f}s: {e}"
            )
            await sleep(wait)

    raise RuntimeError("Retry loop exited without a result")
