"""tenacity retry policy for basemap and tile HTTP calls."""

from __future__ import annotations

import logging

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

# Connection resets, DNS failures and timeouts. HTTP status errors are final.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    TimeoutError,
)


def retry_async(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retry_exceptions: tuple[type[BaseException], ...] = TRANSIENT_ERRORS,
):
    """
    Build a decorator that retries an async call on transient errors.

    The call runs at most ``max_retries + 1`` times, sleeping
    ``retry_delay * backoff_factor ** n`` seconds between attempts. The last
    error is re-raised unchanged once attempts are exhausted.
    """
    return retry(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=retry_delay, exp_base=backoff_factor),
        retry=retry_if_exception_type(retry_exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
