"""
CoinGecko REST API Client

This module provides typed endpoint wrappers around the rate-limited REST client
for the CoinGecko v3 public API (or any upstream exposing the same shape).

API Documentation:
    https://docs.coingecko.com/v3.0.1/reference/introduction

Endpoints Used:
    - GET /ping          - Lightweight reachability probe
    - GET /simple/price  - Price-only lookup
    - GET /coins/markets - Full market rows (price, change, volume, cap, sparkline)
    - GET /global        - Aggregate market totals

Rate Limits:
    The public tier allows roughly 10-30 calls per minute. Every call goes through
    one shared RateLimiter so that the REST tier and the global feed never burst.

Usage:
    async with CoinGeckoAPIClient() as client:
        rows = await client.get_coins_markets(["bitcoin", "ethereum"])
"""

from typing import Any, Dict, List, Optional

from core.errors import MalformedPayload
from core.logging import get_logger
from core.rate_limited_client import RateLimitedClient, RateLimiter


class CoinGeckoAPIClient:
    """
    Async client for the CoinGecko v3 REST API.

    Attributes:
        http: Underlying RateLimitedClient
        logger: Logger instance

    Notes:
        - Raises ProviderError subclasses; the provider converts them to a status
        - Response shapes are checked just enough to fail with MalformedPayload
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        limiter: Optional[RateLimiter] = None,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        rate_limit_backoff: Optional[float] = None
    ):
        """
        Initialize the client. Unspecified values come from settings.

        Args:
            base_url: REST base URL
            limiter: Shared rate limiter gate
            timeout: Per-request timeout in seconds
            headers: Extra request headers (API key)
            rate_limit_backoff: Delay after HTTP 429 without Retry-After
        """
        from core.config import settings

        self.http = RateLimitedClient(
            base_url or settings.coingecko_base_url,
            limiter=limiter if limiter is not None else RateLimiter(settings.rest_min_spacing),
            timeout=timeout if timeout is not None else settings.rest_timeout,
            headers=headers if headers is not None else settings.get_coingecko_headers(),
            rate_limit_backoff=rate_limit_backoff if rate_limit_backoff is not None else settings.rate_limit_backoff,
            provider="coingecko",
        )
        self.logger = get_logger(__name__)

    # ============================================
    # Session Management
    # ============================================

    async def __aenter__(self):
        await self.http.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.http.close()

    @property
    def limiter(self) -> RateLimiter:
        return self.http.limiter

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.http.get(path, params)

    # ============================================
    # Endpoints
    # ============================================

    async def ping(self) -> Dict[str, Any]:
        """
        Probe reachability.

        Returns:
            {"gecko_says": "(V3) To the Moon!"}
        """
        data = await self._get("/ping")
        if not isinstance(data, dict):
            raise MalformedPayload("Expected object from /ping", provider="coingecko")
        return data

    async def get_simple_price(
        self,
        ids: List[str],
        vs_currency: str = "usd",
        include_24hr_change: bool = True
    ) -> Dict[str, Dict[str, float]]:
        """
        Fetch current prices only.

        Returns:
            {"bitcoin": {"usd": 67234.5, "usd_24h_change": -2.3}, ...}
        """
        params = {
            "ids": ",".join(ids),
            "vs_currencies": vs_currency,
            "include_24hr_change": str(include_24hr_change).lower(),
        }
        data = await self._get("/simple/price", params)
        if not isinstance(data, dict):
            raise MalformedPayload("Expected object from /simple/price", provider="coingecko")
        return data

    async def get_coins_markets(
        self,
        ids: List[str],
        sparkline: bool = True,
        price_change_percentage: str = "24h",
        vs_currency: str = "usd"
    ) -> List[Dict[str, Any]]:
        """
        Fetch market rows for the given asset ids.

        Args:
            ids: CoinGecko asset ids
            sparkline: Include 7d sparkline prices
            price_change_percentage: Extra change windows to include
            vs_currency: Quote currency

        Returns:
            List of CoinGecko market items (raw)
        """
        params = {
            "vs_currency": vs_currency,
            "ids": ",".join(ids),
            "order": "market_cap_desc",
            "per_page": max(len(ids), 1),
            "page": 1,
            "sparkline": str(sparkline).lower(),
            "price_change_percentage": price_change_percentage,
        }
        data = await self._get("/coins/markets", params)
        if not isinstance(data, list):
            raise MalformedPayload("Expected array from /coins/markets", provider="coingecko")
        return [item for item in data if isinstance(item, dict)]

    async def get_global(self) -> Dict[str, Any]:
        """Fetch aggregate market totals (raw, with "data" envelope)."""
        data = await self._get("/global")
        if not isinstance(data, dict):
            raise MalformedPayload("Expected object from /global", provider="coingecko")
        return data
