"""
Retrying fetcher: runs one API call and retries it on throttling.

Transient failures (429/503/504, timeouts, dropped connections) are retried
with a backoff of attempt * base seconds, or the server's Retry-After when
that is longer. Anything else propagates on the first failure.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from ..config import MAX_RETRIES, BASE_BACKOFF_SECONDS

logger = logging.getLogger("m365_admin_toolkit.graph.retry")


class TransientApiError(Exception):
    """Rate-limit or server-busy response; safe to retry."""
    def __init__(self, status_code: int, url: str, retry_after: Optional[float] = None,
                 message: str = ""):
        self.status_code = status_code
        self.url = url
        self.retry_after = retry_after
        super().__init__(
            f"Transient API error {status_code} for {url}"
            + (f": {message}" if message else "")
        )


class PermanentApiError(Exception):
    """Authorization, validation or not-found error; never retried."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        self.message = message
        super().__init__(f"API error {status_code} for {url}: {message}")


class RetryLimitExceeded(Exception):
    """Raised once every permitted attempt has failed transiently."""
    def __init__(self, operation: str, attempts: int, last_error: Optional[Exception] = None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} still failing after {attempts} attempts: {last_error}"
        )


def compute_wait(attempt: int, base_seconds: float, retry_after: Optional[float]) -> float:
    """Wait before retry number `attempt` (1-based)."""
    return max(retry_after or 0.0, attempt * base_seconds)


async def fetch_with_retry(
    operation: Callable[[], Awaitable[Any]],
    *,
    name: str = "API call",
    max_retries: int = MAX_RETRIES,
    base_seconds: float = BASE_BACKOFF_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """
    Await `operation()` and return its result, retrying transient failures.

    The operation is invoked at most max_retries + 1 times.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except TransientApiError as e:
            attempt += 1
            if attempt > max_retries:
                logger.error(f"{name}: giving up after {attempt} attempts ({e})")
                raise RetryLimitExceeded(name, attempt, e) from e
            wait_time = compute_wait(attempt, base_seconds, e.retry_after)
            logger.warning(
                f"Throttled ({e.status_code}) on {name}. "
                f"Retry {attempt}/{max_retries} in {wait_time:.1f}s"
            )
            await sleep(wait_time)
