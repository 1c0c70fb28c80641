from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from loguru import logger

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    max_delay: float,
    retry_on: Tuple[Type[BaseException], ...],
    context: str,
    give_up_on: Tuple[Type[BaseException], ...] = (),
) -> T:
    """Run ``operation`` until it succeeds, doubling the delay between tries.

    Only exceptions listed in ``retry_on`` are retried; the last one is
    re-raised once ``attempts`` is exhausted. Exceptions in ``give_up_on``
    are raised at once even when they also match ``retry_on``.
    """
    delay = base_delay
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if isinstance(exc, give_up_on):
                raise
            if attempt >= attempts:
                logger.warning("{} failed after {} attempts: {}", context, attempt, exc)
                raise
            logger.warning("{} failed (attempt {}/{}): {}. Retrying in {:.2f}s", context, attempt, attempts, exc, delay)
            await asyncio.sleep(delay)
            delay = min(delay * 2, max_delay)
    raise RuntimeError("retry_async needs at least one attempt")
