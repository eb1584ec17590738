"""
RPC Wrapper with Timeout and Retry Logic.

Provides centralized timeout and bounded retry functionality for
blockchain RPC calls and batch writes.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from loguru import logger

from app.config.constants import BLOCKCHAIN_TIMEOUT
from app.utils.exceptions import is_transient

T = TypeVar("T")


class BlockchainTimeoutError(TimeoutError):
    """Raised when blockchain RPC call times out."""
    pass


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """
    Exponential backoff delay for a 1-indexed attempt.

    Args:
        attempt: Failure number (1 for the first failure)
        base: Delay after the first failure
        cap: Upper bound

    Returns:
        min(base * 2 ** (attempt - 1), cap)
    """
    if attempt < 1:
        return 0.0
    return min(base * (2 ** (attempt - 1)), cap)


async def with_timeout(
    coro: Awaitable[T],
    timeout: float = BLOCKCHAIN_TIMEOUT,
    operation_name: str = "RPC call",
) -> T:
    """
    Execute async coroutine with timeout.

    Args:
        coro: Coroutine to execute
        timeout: Timeout in seconds (default: BLOCKCHAIN_TIMEOUT)
        operation_name: Operation name for logging

    Returns:
        Result of the coroutine

    Raises:
        BlockchainTimeoutError: If operation times out
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except TimeoutError as e:
        error_msg = f"{operation_name} timed out after {timeout}s"
        logger.error(error_msg)
        raise BlockchainTimeoutError(error_msg) from e


async def retry_with_backoff(
    coro_factory: Callable[[], Awaitable[T]],
    max_attempts: int,
    base_delay: float,
    max_delay: float,
    operation_name: str = "operation",
    retry_on: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Execute an async operation with bounded exponential backoff.

    Only errors accepted by ``retry_on`` are retried; anything else
    propagates immediately. CancelledError always propagates.

    Args:
        coro_factory: Factory returning a fresh awaitable per attempt
        max_attempts: Total attempts including the first one
        base_delay: Delay after the first failure
        max_delay: Delay cap
        operation_name: Operation name for logging
        retry_on: Predicate selecting retryable errors
        sleep: Sleep function (injectable for tests)

    Returns:
        Result of the operation

    Raises:
        The last error once all attempts fail
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            result = await coro_factory()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not retry_on(e) or attempt >= max_attempts:
                logger.error(
                    f"{operation_name} failed after {attempt} attempt(s): {e}"
                )
                raise

            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"{operation_name} failed on attempt {attempt}/{max_attempts}: "
                f"{e}. Retrying in {delay:.1f}s..."
            )
            await sleep(delay)
            continue

        if attempt > 1:
            logger.success(f"{operation_name} succeeded on attempt {attempt}")
        return result
