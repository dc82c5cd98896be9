# src/ndc_qty/registry/base.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

import httpx

from ndc_qty.config import RegistryApiConfig
from ndc_qty.errors import DependencyError, RateLimitError
from ndc_qty.resilience.cache import TTLCache
from ndc_qty.resilience.rate_limiter import SlidingWindowRateLimiter
from ndc_qty.resilience.retry import RETRYABLE_STATUS_CODES, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class LookupResult(Generic[T]):
    """
    Value of one registry read, plus where it came from.

    `is_stale` is set when the value is older than the fresh TTL and was
    served because the registry was unavailable or over quota.
    """
    value: T
    is_stale: bool = False
    from_cache: bool = False


class RegistryClient:
    """
    Base for the upstream registry clients.

    Read path of every operation:
    1) cache (fresh, or stale when the caller allows it);
    2) rate limiter, serving stale data or raising RateLimitError when over quota;
    3) remote GET inside retry_async;
    4) non-retryable 4xx -> negative value, cached;
    5) anything else -> stale data if available, otherwise DependencyError.
    """

    def __init__(
        self,
        registry_conf: RegistryApiConfig,
        *,
        cache: Optional[TTLCache] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._conf = registry_conf
        self._base_url = registry_conf.base_url.rstrip("/")
        self._timeout = registry_conf.timeout_seconds
        self._retry_conf = registry_conf.retry
        self._cache = cache if cache is not None else TTLCache(
            max_size=registry_conf.cache_max_size,
            fresh_ttl_seconds=registry_conf.fresh_ttl_seconds,
            stale_ttl_seconds=registry_conf.stale_ttl_seconds,
        )
        self._rate_limiter = rate_limiter if rate_limiter is not None else SlidingWindowRateLimiter(
            max_requests=registry_conf.rate_limit_per_second,
            window_seconds=registry_conf.rate_limit_window_seconds,
        )
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self._conf.name

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def _cache_key(self, operation: str, param: str) -> str:
        return f"{self._conf.name}:{operation}:{param.lower().strip()}"

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def _cached_lookup(
        self,
        operation: str,
        param: str,
        fetch: Callable[[], Awaitable[T]],
        negative: T,
        *,
        allow_stale: bool = False,
    ) -> LookupResult[T]:
        key = self._cache_key(operation, param)

        hit = self._cache.get_with_stale(key, allow_stale=allow_stale)
        if hit is not None:
            logger.debug("%s.%s cache hit (stale=%s)", self.name, operation, hit.is_stale)
            return LookupResult(value=hit.value, is_stale=hit.is_stale, from_cache=True)

        logger.info("%s.%s cache miss", self.name, operation)

        decision = self._rate_limiter.allow()
        if not decision.allowed:
            logger.warning(
                "%s rate limit reached, retry after %sms", self.name, decision.retry_after_ms
            )
            stale = self._stale_fallback(key, operation)
            if stale is not None:
                return stale
            raise RateLimitError(
                f"Rate limit exceeded for {self.name}",
                detail=f"Local quota of {self._conf.rate_limit_per_second} requests per second reached",
                retry_after_ms=decision.retry_after_ms,
            )

        try:
            value = await retry_async(
                fetch,
                self._retry_conf,
                sleep=self._sleep,
                context={"operation": f"{self.name}.{operation}"},
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if 400 <= status < 500 and status not in RETRYABLE_STATUS_CODES:
                logger.info("%s.%s returned HTTP %s, caching negative result", self.name, operation, status)
                self._cache.set(key, negative)
                return LookupResult(value=negative)
            return self._degrade(key, operation, exc)
        except (httpx.HTTPError, OSError, asyncio.TimeoutError, ValueError) as exc:
            # ValueError covers undecodable JSON bodies
            return self._degrade(key, operation, exc)

        self._cache.set(key, value)
        logger.info("%s.%s fetched from upstream", self.name, operation)
        return LookupResult(value=value)

    def _stale_fallback(self, key: str, operation: str) -> Optional[LookupResult]:
        if not self._conf.serve_stale_on_error:
            return None
        hit = self._cache.get_with_stale(key, allow_stale=True)
        if hit is None:
            return None
        logger.warning(
            "%s.%s serving cached data (age=%.0fs, stale=%s)", self.name, operation, hit.age_seconds, hit.is_stale
        )
        return LookupResult(value=hit.value, is_stale=hit.is_stale, from_cache=True)

    def _degrade(self, key: str, operation: str, exc: Exception) -> LookupResult:
        stale = self._stale_fallback(key, operation)
        if stale is not None:
            return stale

        logger.error("%s.%s failed after retries: %s", self.name, operation, type(exc).__name__)
        raise DependencyError(
            f"{self.name} registry unavailable",
            detail=f"{self.name}.{operation} failed",
            retry_after_ms=self._conf.dependency_retry_after_ms,
        ) from exc
