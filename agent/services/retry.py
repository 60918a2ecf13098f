"""
Retry With Backoff
==================
One tenacity policy for every outbound call (Graph API, analysis and search
services, completion service, Supabase). Only transient failures are retried:
connection/timeout errors and HTTP 429/5xx. Anything else propagates on the
first attempt.
"""

import logging

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception, before_sleep_log

from config import logger, RETRY_MAX_ATTEMPTS, RETRY_BASE_DELAY_SECONDS

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def is_transient(exc: BaseException) -> bool:
    """True for failures worth another attempt."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError, OSError))


def with_backoff(
    max_attempts: int = RETRY_MAX_ATTEMPTS,
    base_delay: float = RETRY_BASE_DELAY_SECONDS,
    max_delay: float = 8.0,
):
    """Decorator factory: exponential backoff starting at base_delay seconds.

    The last exception is re-raised unchanged once attempts are exhausted so
    callers can map it to their own error type.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay, min=base_delay, max=max_delay),
        retry=retry_if_exception(is_transient),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
