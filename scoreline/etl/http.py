"""Shared HTTP plumbing for provider fetchers.

- lazily created httpx.AsyncClient (or an injected one, e.g. with MockTransport)
- per-provider sliding-window rate limit
- exponential backoff on 429 / 5xx / timeouts; every retry first asks
  retry_guard (the provider's quota, when wired by the service) and stops
  when it refuses
- maps every failure onto ProviderUnavailable or MalformedPayload
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

import httpx

from scoreline.etl.base import FeedFetcher, MalformedPayload, ProviderUnavailable
from scoreline.etl.rate_limiter import SlidingWindowRateLimiter
from scoreline.telemetry import record_http_request

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "scoreline/1.0"


class HttpFeedFetcher(FeedFetcher):
    BASE_URL = ""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        requests_per_minute: int = 30,
        max_retries: int = 3,
        retry_delay_base: float = 2.0,
        timeout: float = DEFAULT_TIMEOUT,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay_base = retry_delay_base
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            max_requests=requests_per_minute, window_seconds=60.0, name=self.provider.value
        )
        # The first attempt is reserved by the caller
        self.retry_guard: Optional[Callable[[], bool]] = None

    def _headers(self) -> dict:
        return {"User-Agent": DEFAULT_USER_AGENT}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._headers(),
                follow_redirects=True,
            )
        return self._client

    async def _request(self, path: str, params: Optional[dict] = None) -> httpx.Response:
        """GET BASE_URL + path with rate limiting and retries."""
        client = await self._get_client()
        url = f"{self.BASE_URL}{path}"
        last_error: Optional[ProviderUnavailable] = None

        for attempt in range(self.max_retries + 1):
            if attempt:
                if self.retry_guard is not None and not self.retry_guard():
                    logger.warning(f"[{self.provider.value}] retry {attempt} refused by quota: {last_error}")
                    break
                wait = self.retry_delay_base * (2 ** (attempt - 1))
                logger.warning(f"[{self.provider.value}] retry {attempt}/{self.max_retries} in {wait:.1f}s: {last_error}")
                await asyncio.sleep(wait)

            await self.rate_limiter.acquire()
            start = time.monotonic()
            try:
                response = await client.get(url, params=params, headers=self._headers())
            except httpx.TimeoutException as e:
                record_http_request(self.provider.value, 0)
                last_error = ProviderUnavailable(f"timeout calling {path}: {e}")
                continue
            except httpx.HTTPError as e:
                record_http_request(self.provider.value, 0)
                last_error = ProviderUnavailable(f"transport error calling {path}: {e}")
                continue

            latency_ms = (time.monotonic() - start) * 1000
            status = response.status_code
            record_http_request(self.provider.value, status, is_rate_limited=status == 429)

            if status == 429 or status >= 500:
                last_error = ProviderUnavailable(f"HTTP {status} from {path}")
                continue
            if status >= 400:
                # Auth and not-found errors do not improve with retries
                raise ProviderUnavailable(f"HTTP {status} from {path}")

            logger.debug(f"[{self.provider.value}] GET {path} -> {status} in {latency_ms:.0f}ms")
            return response

        raise last_error or ProviderUnavailable(f"no response from {path}")

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        response = await self._request(path, params)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedPayload(f"invalid JSON from {path}: {e}") from e

    async def _get_text(self, path: str, params: Optional[dict] = None) -> str:
        response = await self._request(path, params)
        return response.text

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
