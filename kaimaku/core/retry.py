"""Backoff policy for catalog API calls.

Timeouts, dropped connections and gateway errors are retried with
exponential backoff and jitter. When the catalog sends ``Retry-After`` on a
503 we wait that long instead (capped at ``max_delay``). Client errors,
429 included, are raised on the first attempt.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.NetworkError, asyncio.TimeoutError)
TRANSIENT_STATUSES = frozenset({500, 502, 503, 504, 520, 522, 524})


@dataclass
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.1  # +/- fraction of the computed delay

    def should_retry(self, exc: Exception) -> bool:
        if isinstance(exc, TRANSIENT_ERRORS):
            return True
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code in TRANSIENT_STATUSES
        return False

    def delay_for(self, attempt: int, exc: Exception | None = None) -> float:
        """Seconds to wait before retry number ``attempt`` (0-based)."""
        hinted = _retry_after(exc)
        if hinted is not None:
            return min(hinted, self.max_delay)

        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        spread = delay * self.jitter
        return max(0.0, delay + random.uniform(-spread, spread))


def _retry_after(exc: Exception | None) -> float | None:
    if not isinstance(exc, httpx.HTTPStatusError):
        return None
    header = exc.response.headers.get("Retry-After")
    if header is None:
        return None
    try:
        return max(0.0, float(header))
    except ValueError:
        # HTTP-date form; fall back to our own backoff
        return None


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    label: str = "request",
) -> T:
    """Await ``fn()`` until it succeeds, fails permanently, or attempts run out."""
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            attempt += 1
            if not policy.should_retry(e):
                raise
            if attempt >= policy.attempts:
                logger.error(f"Giving up on {label} after {attempt} attempts: {e}")
                raise

            delay = policy.delay_for(attempt - 1, e)
            logger.warning(
                f"{label} failed ({type(e).__name__}: {e}), "
                f"retry {attempt}/{policy.attempts - 1} in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
