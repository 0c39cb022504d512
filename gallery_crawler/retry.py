"""Generic retry-with-backoff combinator for async operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .errors import CrawlCancelled

logger = logging.getLogger("gallery_crawler")

T = TypeVar("T")


def linear_backoff(base_delay: float) -> Callable[[int], float]:
    """Delay of ``attempt * base_delay`` seconds after the given failed attempt."""

    def _delay(attempt: int) -> float:
        return attempt * base_delay

    return _delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    backoff: Callable[[int], float],
    *,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    should_stop: Optional[Callable[[], bool]] = None,
    on_failure: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """Run ``operation`` up to ``max_attempts`` times.

    After every failure ``should_stop`` is consulted first; when it returns
    true the failure is reported as :class:`CrawlCancelled` instead of being
    retried. The last error is re-raised once attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except CrawlCancelled:
            raise
        except retry_on as exc:
            if should_stop is not None and should_stop():
                raise CrawlCancelled() from exc
            if on_failure is not None:
                on_failure(attempt, exc)
            if attempt == max_attempts:
                raise
            delay = backoff(attempt)
            if delay > 0:
                logger.debug("Retrying in %.2fs (attempt %d/%d)", delay, attempt, max_attempts)
                await asyncio.sleep(delay)
    raise AssertionError("unreachable")
