"""Bounded retry with backoff for flaky backend reads."""

import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
)

from remindsync.utils.errors import BackendUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DELAYS = (0.25, 0.5, 1.0)


def _log_attempt(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.info(f"Attempt {state.attempt_number} failed: {error}; retrying")


async def retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delays: Sequence[float] = DEFAULT_DELAYS,
) -> T:
    """Call fn until it succeeds or max_attempts is reached.

    Only BackendUnavailableError is retried; anything else propagates
    immediately. The last error is re-raised when attempts run out.

    Args:
        fn: Zero-argument coroutine function
        max_attempts: Total number of calls, including the first
        delays: Seconds to wait before each retry; the last value repeats
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    waits = [wait_fixed(d) for d in delays] or [wait_fixed(0)]

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_chain(*waits),
        retry=retry_if_exception_type(BackendUnavailableError),
        before_sleep=_log_attempt,
        reraise=True,
    ):
        with attempt:
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover
