"""
Retry with exponential backoff for transient store failures.

Only StoreUnavailableError is retried. NotFoundError (and anything else) is
raised immediately: retrying cannot make a missing row appear.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, TypeVar

from domain.errors import NotFoundError, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS: int = 3
DEFAULT_BASE_DELAY_SECONDS: float = 1.0


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Await `operation()` up to `max_attempts` times.

    The delay before attempt n+1 is base_delay * 2**(n-1): with the defaults,
    1s then 2s. The last StoreUnavailableError is re-raised once attempts are
    exhausted.
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return await operation()
        except NotFoundError:
            raise
        except StoreUnavailableError as exc:
            if attempt >= max_attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "Store operation failed, retrying in %.2fs (attempt %d/%d): %s",
                delay,
                attempt,
                max_attempts,
                exc,
            )
            await sleep(delay)
            attempt += 1


def with_retry(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator form of retry_operation for coroutine functions.

    Example:
        @with_retry(max_attempts=5, base_delay=0.5)
        async def load_piece(piece_id):
            return await ctx.pieces.get_piece(piece_id)
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_operation(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                base_delay=base_delay,
            )

        return wrapper

    return decorator


__all__ = ["retry_operation", "with_retry"]
