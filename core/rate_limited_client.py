"""
Rate-Limited REST Client

This module provides an async HTTP client that enforces a minimum spacing
between consecutive outbound requests and a bounded per-request timeout.

It handles:
- A shared "last request time" gate owned by a RateLimiter instance
- Request timeouts (RequestTimeout)
- HTTP errors, with special backoff for 429 (HttpError / RateLimited)
- Connection failures (NetworkError)
- Non-JSON bodies (MalformedPayload)

The RateLimiter is an explicit object rather than module state, so every
caller that must share one upstream quota is handed the same instance, and
tests can build independent ones.

Usage:
    limiter = RateLimiter(min_spacing=1.0)
    async with RateLimitedClient("https://api.coingecko.com/api/v3", limiter=limiter) as client:
        data = await client.get("/simple/price", {"ids": "bitcoin", "vs_currencies": "usd"})
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from core.errors import HttpError, MalformedPayload, NetworkError, RateLimited, RequestTimeout
from core.logging import get_logger, log_api_request, log_api_response


class RateLimiter:
    """
    Minimum-spacing gate shared by every caller of one upstream.

    Each request computes ``wait = min_spacing - (now - last_request_time)``,
    sleeps if positive, runs, then stamps ``last_request_time = now``. The
    whole sequence runs under an asyncio.Lock so concurrent callers are
    serialized.

    Attributes:
        min_spacing: Minimum seconds between two requests
        last_request_time: Clock reading of the last completed request (None before the first)

    Example:
        >>> limiter = RateLimiter(min_spacing=1.0)
        >>> async with limiter.slot():
        ...     await session.get(url)
    """

    def __init__(
        self,
        min_spacing: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Args:
            min_spacing: Minimum seconds between consecutive requests
            clock: Monotonic clock (injectable for tests)
            sleep: Async sleep (injectable for tests)
        """
        if min_spacing < 0:
            raise ValueError(f"min_spacing cannot be negative: {min_spacing}")
        self.min_spacing = min_spacing
        self.last_request_time: Optional[float] = None
        self._blocked_until: Optional[float] = None
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

    def time_until_ready(self) -> float:
        """Seconds the next caller would have to wait right now."""
        now = self._clock()
        wait = 0.0
        if self.last_request_time is not None:
            wait = self.min_spacing - (now - self.last_request_time)
        if self._blocked_until is not None:
            wait = max(wait, self._blocked_until - now)
        return max(wait, 0.0)

    @asynccontextmanager
    async def slot(self):
        """
        Hold the gate for the duration of one request.

        Yields:
            Seconds spent waiting for the gate
        """
        async with self._lock:
            wait = self.time_until_ready()
            if wait > 0:
                await self._sleep(wait)
            try:
                yield wait
            finally:
                self.last_request_time = self._clock()

    def backoff(self, seconds: float) -> None:
        """
        Block the gate for ``seconds`` from now (used after HTTP 429).

        A later, longer backoff extends the block; a shorter one never shortens it.
        """
        until = self._clock() + max(seconds, 0.0)
        if self._blocked_until is None or until > self._blocked_until:
            self._blocked_until = until

    def __repr__(self) -> str:
        return f"<RateLimiter(min_spacing={self.min_spacing})>"


class RateLimitedClient:
    """
    Async JSON GET client bound to one base URL and one RateLimiter.

    Attributes:
        base_url: Upstream base URL (no trailing slash)
        limiter: Shared RateLimiter gate
        timeout: Per-request timeout in seconds
        session: aiohttp ClientSession (created on __aenter__ / start())

    Example:
        >>> async with RateLimitedClient("https://api.coingecko.com/api/v3") as client:
        ...     pong = await client.get("/ping")

    Notes:
        - Failures are raised as ProviderError subclasses; adapters convert them
        - HTTP 429 pushes the limiter forward by Retry-After (or rate_limit_backoff)
        - There are no retries here; retry policy belongs to the polling layer
    """

    def __init__(
        self,
        base_url: str,
        limiter: Optional[RateLimiter] = None,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        rate_limit_backoff: float = 60.0,
        provider: str = "rest"
    ):
        """
        Args:
            base_url: Upstream base URL
            limiter: Gate to share with other clients of the same upstream (new one if None)
            timeout: Per-request timeout in seconds
            headers: Extra headers sent with every request
            rate_limit_backoff: Gate delay after 429 when no Retry-After header is sent
            provider: Name used in logs and error messages
        """
        self.base_url = base_url.rstrip("/")
        self.limiter = limiter if limiter is not None else RateLimiter()
        self.timeout = timeout
        self.headers = {"Accept": "application/json", **(headers or {})}
        self.rate_limit_backoff = rate_limit_backoff
        self.provider = provider
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(__name__)

    # ============================================
    # Session Management
    # ============================================

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self) -> None:
        """Create the HTTP session (idempotent)."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(headers=self.headers)
            self.logger.debug(f"{self.provider} session created ({self.base_url})")

    async def close(self) -> None:
        """Close the HTTP session (safe to call multiple times)."""
        if self.session and not self.session.closed:
            await self.session.close()
            self.logger.debug(f"{self.provider} session closed")

    # ============================================
    # Request Handler
    # ============================================

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Make a rate-limited GET request and decode the JSON body.

        Args:
            path: Endpoint path (e.g., "/coins/markets")
            params: Optional query parameters

        Returns:
            Decoded JSON response

        Raises:
            RuntimeError: If the session was not started
            RequestTimeout: If the request exceeded the timeout
            RateLimited: On HTTP 429
            HttpError: On any other non-2xx status
            NetworkError: If no response was received
            MalformedPayload: If the body is not valid JSON
        """
        if not self.session:
            raise RuntimeError("Client session not initialized. Use 'async with' statement.")

        url = f"{self.base_url}{path}"
        log_api_request(self.provider, path, params)

        async with self.limiter.slot() as waited:
            if waited:
                self.logger.debug(f"{self.provider} {path} waited {waited:.3f}s for rate limit gate")

            started = time.monotonic()
            try:
                async with self.session.get(
                    url,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as resp:
                    log_api_response(self.provider, path, resp.status, time.monotonic() - started)

                    if resp.status == 429:
                        retry_after = self._retry_after(resp.headers.get("Retry-After"))
                        self.limiter.backoff(retry_after)
                        self.logger.warning(
                            f"Rate limited (HTTP 429) on {self.provider} {path}. "
                            f"Backing off {retry_after:.1f}s"
                        )
                        raise RateLimited(retry_after, provider=self.provider)

                    if resp.status >= 400:
                        text = await resp.text()
                        self.logger.error(f"HTTP {resp.status} on {self.provider} {path}: {text[:200]}")
                        raise HttpError(resp.status, f"HTTP {resp.status} on {path}", provider=self.provider)

                    try:
                        return await resp.json(content_type=None)
                    except ValueError as e:
                        raise MalformedPayload(f"Invalid JSON from {path}: {e}", provider=self.provider) from e

            except asyncio.TimeoutError as e:
                self.logger.error(f"Timeout on {self.provider} {path} after {self.timeout}s")
                raise RequestTimeout(f"Timed out after {self.timeout}s on {path}", provider=self.provider) from e

            except aiohttp.ClientError as e:
                self.logger.error(f"Request failed on {self.provider} {path}: {e}")
                raise NetworkError(f"Request failed on {path}: {e}", provider=self.provider) from e

    def _retry_after(self, header: Optional[str]) -> float:
        """Parse a Retry-After header in seconds, falling back to rate_limit_backoff."""
        if header:
            try:
                return max(float(header), 0.0)
            except ValueError:
                pass
        return self.rate_limit_backoff

    def __repr__(self) -> str:
        return f"<RateLimitedClient(provider='{self.provider}', base_url='{self.base_url}')>"
