# src/ndc_qty/resilience/retry.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from ndc_qty.config import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = (408, 429)

_TRANSPORT_ERRORS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.RemoteProtocolError,
    ConnectionResetError,
    asyncio.TimeoutError,
)


def status_code_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return getattr(error, "status_code", None)


def is_retryable_error(error: BaseException, retry_conf: Optional[RetryConfig] = None) -> bool:
    """
    Retryable: HTTP 5xx, 408, 429 and transport timeouts / connection resets.
    Every other 4xx fails fast.
    """
    retry_conf = retry_conf or RetryConfig()

    status = status_code_of(error)
    if status is not None:
        if 500 <= status < 600:
            return retry_conf.retry_on_5xx
        if status == 429:
            return retry_conf.retry_on_429
        if status == 408:
            return retry_conf.retry_on_timeout
        return False

    if isinstance(error, _TRANSPORT_ERRORS):
        return retry_conf.retry_on_timeout

    return False


def backoff_delay(retry_number: int, retry_conf: RetryConfig) -> float:
    """Delay before the n-th retry (1-based): base * 2^(n-1), capped."""
    delay = retry_conf.base_delay_seconds * (2 ** (retry_number - 1))
    return min(delay, retry_conf.max_delay_seconds)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    retry_conf: RetryConfig,
    *,
    is_retryable: Optional[Callable[[BaseException], bool]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    context: Optional[Dict[str, Any]] = None,
) -> T:
    """
    Calls `fn` up to `retry_conf.max_attempts` times.

    Non-retryable errors propagate immediately; once attempts are exhausted
    the last original exception is re-raised unchanged.
    """
    check = is_retryable or (lambda exc: is_retryable_error(exc, retry_conf))
    context = context or {}
    max_attempts = max(1, retry_conf.max_attempts)

    attempt = 0
    while True:
        attempt += 1
        try:
            result = await fn()
        except Exception as exc:
            if not check(exc) or attempt >= max_attempts:
                if attempt > 1:
                    logger.warning(
                        "Giving up after %s attempts (%s): %s", attempt, context.get("operation", "call"), type(exc).__name__
                    )
                raise

            delay = backoff_delay(attempt, retry_conf)
            logger.warning(
                "Retrying %s after error (attempt %s/%s, sleeping %.2fs): %s",
                context.get("operation", "call"),
                attempt + 1,
                max_attempts,
                delay,
                type(exc).__name__,
            )
            await sleep(delay)
            continue

        if attempt > 1:
            logger.info("Retry succeeded for %s on attempt %s", context.get("operation", "call"), attempt)
        return result
