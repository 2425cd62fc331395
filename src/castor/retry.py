"""Bounded async retry for a single provider call.

The fallback layer moves between providers; this module only smooths over
transient failures inside one provider before that happens.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

from castor._http import RETRYABLE_STATUS_CODES
from castor.errors import ErrorKind, ProviderError, _walk_exception_chain

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)

_TRANSIENT_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.SERVER_ERROR})


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and optional jitter."""

    max_attempts: int = 2
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 5.0
    jitter: bool = True  # full jitter
    max_elapsed_s: float | None = 15.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 0")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")
        if self.max_elapsed_s is not None and self.max_elapsed_s < 0:
            raise ValueError("RetryPolicy.max_elapsed_s must be >= 0 or None")


#: Single attempt; used by availability probes, which must stay cheap.
NO_RETRY = RetryPolicy(max_attempts=1)


def should_retry(exc: BaseException) -> bool:
    """Return True when a provider call failing with *exc* is worth repeating.

    Auth, quota and request-shape failures never are. Rate limits are retried
    only when the backend told us how long to wait; otherwise the fallback
    layer handles them by switching providers.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False

    if isinstance(exc, ProviderError):
        if exc.kind is ErrorKind.RATE_LIMIT:
            return exc.retry_after_s is not None
        if exc.kind in _TRANSIENT_KINDS:
            return exc.status_code is None or exc.status_code in RETRYABLE_STATUS_CODES
        return False

    return any(isinstance(e, TimeoutError) for e in _walk_exception_chain(exc))


def _compute_backoff_delay(policy: RetryPolicy, *, retry_index: int) -> float:
    # retry_index starts at 1 for the first retry sleep.
    base = policy.initial_delay_s * (
        policy.backoff_multiplier ** max(0, retry_index - 1)
    )
    base = min(policy.max_delay_s, base)
    if base <= 0:
        return 0.0
    if not policy.jitter:
        return base
    return random.random() * base  # noqa: S311


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry,
) -> T:
    """Run an async factory with bounded retries."""
    start = time.monotonic()

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await factory()
        except Exception as exc:
            if not should_retry(exc) or attempt >= policy.max_attempts:
                raise

            delay = _compute_backoff_delay(policy, retry_index=attempt)
            if isinstance(exc, ProviderError) and exc.retry_after_s is not None:
                delay = max(delay, exc.retry_after_s)

            if policy.max_elapsed_s is not None:
                remaining = policy.max_elapsed_s - (time.monotonic() - start)
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            logger.debug(
                "Retrying after %s (attempt %d/%d, sleeping %.2fs)",
                type(exc).__name__,
                attempt,
                policy.max_attempts,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)

    raise AssertionError("retry_async exhausted without returning or raising")  # pragma: no cover
