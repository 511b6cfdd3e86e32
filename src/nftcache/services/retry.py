"""Bounded retry with exponential backoff for transient errors."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog

from nftcache.services.exceptions import TransientError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, and how long to wait in between."""

    attempts: int = 3
    backoff_seconds: float = 1.0
    backoff_max_seconds: float = 8.0

    def delays(self) -> list[float]:
        """Sleep before each retry: base, 2*base, 4*base, ... capped."""
        return [
            min(self.backoff_seconds * (2**i), self.backoff_max_seconds)
            for i in range(max(self.attempts - 1, 0))
        ]


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    event: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **context,
) -> T:
    """Run `operation`, retrying TransientError up to `policy.attempts` times.

    Permanent errors and anything else propagate immediately. The last
    TransientError is re-raised once attempts are exhausted.

    Args:
        operation: Zero-argument coroutine factory
        policy: Attempt count and backoff
        event: Log event prefix (e.g. "media.fetch")
        sleep: Sleep function (replaced in tests)
        **context: Extra log context (mint, uri, ...)
    """
    retry_delays = policy.delays()

    for attempt in range(policy.attempts):
        try:
            return await operation()
        except TransientError as e:
            if attempt < len(retry_delays):
                delay = retry_delays[attempt]
                logger.warning(
                    f"{event}.retry",
                    error=str(e),
                    error_type=type(e).__name__,
                    attempt=attempt + 1,
                    retry_in_seconds=delay,
                    **context,
                )
                await sleep(delay)
            else:
                logger.warning(
                    f"{event}.retries_exhausted",
                    error=str(e),
                    error_type=type(e).__name__,
                    attempts=policy.attempts,
                    **context,
                )
                raise

    # Unreachable: the loop either returns or raises
    raise RuntimeError("retry_transient exited without a result")
