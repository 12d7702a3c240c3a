"""
metricd - Retry Helpers

Bounded retries with a fixed backoff table shared by the SQL storage and the
delivery client.
"""

import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar, Union

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 4

# Seconds to wait before retry number 1, 2, 3. Later retries wait FALLBACK_DELAY.
BACKOFF_SCHEDULE = (1, 3, 5)
FALLBACK_DELAY = 1


def backoff(attempt: int) -> float:
    """Return the delay before retry number `attempt` (1-based)."""
    if 1 <= attempt <= len(BACKOFF_SCHEDULE):
        return BACKOFF_SCHEDULE[attempt - 1]
    return FALLBACK_DELAY


async def retry_async(
    action: Callable[[], Awaitable[T]],
    retry_on: Union[Type[BaseException], Tuple[Type[BaseException], ...]],
    attempts: int = DEFAULT_ATTEMPTS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    op: str = "",
) -> T:
    """
    Run `action` until it succeeds or `attempts` runs are used up.

    Only exceptions matching `retry_on` are retried; anything else propagates
    immediately. After the last failed attempt the last exception is re-raised.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(attempts):
        if attempt:
            await sleep(backoff(attempt))
        try:
            return await action()
        except retry_on as e:
            logger.info(
                "Attempt failed",
                op=op,
                attempt=attempt + 1,
                attempts=attempts,
                error=str(e),
            )
            if attempt == attempts - 1:
                raise

    raise AssertionError("unreachable")
