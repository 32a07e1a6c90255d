"""
Retry Policy Module.

Wraps a whole analysis call (quick or chunked) with bounded retries for
retryable failures. Fatal failures propagate at once; when the retries run
out, the failure of the final attempt is surfaced as a service-unavailable
condition that carries the full attempt count.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
    wait_random,
)

from config import logger
from errors import ServiceUnavailableError, classify_error


T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    return classify_error(error).retryable


async def run_with_retries(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    jitter: float = 1.0,
    description: str = "OpenAI analysis",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an operation, retrying retryable failures with backoff and jitter.

    The wait before retry n is base_delay * n plus up to jitter seconds.
    At most max_retries + 1 attempts are made; the last one is the final
    attempt.

    Args:
        operation (Callable): Zero-argument coroutine factory
        max_retries (int): Retries after the initial attempt
        base_delay (float): Backoff base in seconds
        jitter (float): Maximum random jitter in seconds
        description (str): Operation name used in logs and errors
        sleep (Callable): Awaitable sleep, replaceable in tests

    Returns:
        T: Result of the first successful attempt

    Raises:
        ServiceUnavailableError: If the retries ran out and the final attempt
            failed, whatever its error
        AnalysisError: Immediately, for fatal failures before the final attempt
    """
    attempts = max_retries + 1

    def log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            {
                "message": f"{description} failed with a retryable error, retrying",
                "attempt": retry_state.attempt_number,
                "max_retries": max_retries,
                "wait_seconds": round(retry_state.next_action.sleep, 2),
                "error": str(retry_state.outcome.exception()),
            }
        )

    def log_final_attempt(retry_state: RetryCallState) -> None:
        if attempts > 1 and retry_state.attempt_number == attempts:
            logger.warning(
                {"message": f"Max retries reached for {description}, attempting final request"}
            )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_incrementing(start=base_delay, increment=base_delay)
        + wait_random(0, jitter),
        retry=retry_if_exception(is_retryable),
        before=log_final_attempt,
        before_sleep=log_retry,
        sleep=sleep,
    )

    attempted = 0

    async def attempt() -> T:
        nonlocal attempted
        attempted += 1
        return await operation()

    try:
        return await retrying(attempt)
    except RetryError as e:
        last_error = e.last_attempt.exception()
    except Exception as e:
        # A fatal error on the final attempt still reports the attempt count
        if attempts == 1 or attempted < attempts:
            raise
        last_error = e

    logger.error(
        {
            "message": f"{description} unavailable",
            "attempts": attempts,
            "error": str(last_error),
        }
    )
    raise ServiceUnavailableError(
        f"{description} unavailable after {attempts} attempts: {last_error}",
        attempts=attempts,
    ) from last_error
