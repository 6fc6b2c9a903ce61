"""
CoinGecko REST Provider

This module implements the ProviderAdapter for the REST price provider tier.

Behaviour:
    - Optional /ping probe before the market fetch, to fail fast when the
      upstream is down without spending a heavier call
    - fetch_snapshots() → /coins/markets (raw market items)
    - fetch_prices()    → /simple/price (price-only read)
    - fetch_global()    → /global

Every expected failure (network, timeout, HTTP status, malformed body) is
caught here and reported as status=ERROR with the message; no records are
returned in that case. The polling layer decides whether to retry.
"""

from typing import Dict, List, Optional

from core.errors import ProviderError
from core.logging import get_logger
from core.normalizer import normalize_global
from core.provider_interface import ProviderAdapter
from core.rate_limited_client import RateLimiter
from core.schemas import FetchResult, GlobalFetchResult, Tier
from core.utils.time import current_utc_datetime
from .api_client import CoinGeckoAPIClient

logger = get_logger(__name__)


class CoinGeckoProvider(ProviderAdapter):
    """
    REST provider adapter (Tier.REST).

    Attributes:
        client: CoinGeckoAPIClient (session opened in initialize())
        probe_before_fetch: Ping before each market fetch

    Example:
        >>> provider = CoinGeckoProvider()
        >>> await provider.initialize()
        >>> result = await provider.fetch_snapshots(["bitcoin"])
        >>> result.status.state
        <ConnectionState.CONNECTED: 'connected'>
        >>> await provider.shutdown()
    """

    name = "coingecko"
    tier = Tier.REST

    def __init__(
        self,
        client: Optional[CoinGeckoAPIClient] = None,
        limiter: Optional[RateLimiter] = None,
        probe_before_fetch: Optional[bool] = None
    ):
        super().__init__()
        from core.config import settings

        self.client = client or CoinGeckoAPIClient(limiter=limiter)
        self.probe_before_fetch = (
            settings.rest_probe_before_fetch if probe_before_fetch is None else probe_before_fetch
        )
        logger.debug(f"CoinGeckoProvider created (base_url={self.client.http.base_url})")

    # ============================================
    # Lifecycle
    # ============================================

    async def initialize(self) -> None:
        logger.info("Initializing CoinGecko provider...")
        await self.client.__aenter__()
        await super().initialize()
        logger.info("✓ CoinGecko provider initialized")

    async def shutdown(self) -> None:
        logger.info("Shutting down CoinGecko provider...")
        await self.client.__aexit__(None, None, None)
        await super().shutdown()

    async def health_check(self) -> bool:
        try:
            await self.client.ping()
            return True
        except ProviderError as e:
            logger.warning(f"CoinGecko health check failed: {e}")
            return False

    # ============================================
    # Fetch Methods
    # ============================================

    async def fetch_snapshots(self, ids: List[str]) -> FetchResult:
        """
        Fetch /coins/markets rows for ids.

        Returns:
            FetchResult with raw CoinGecko items; empty payload and ERROR status on failure
        """
        if not ids:
            self._mark_success()
            return self._result([])

        try:
            if self.probe_before_fetch:
                await self.client.ping()
            items = await self.client.get_coins_markets(ids)
        except ProviderError as e:
            logger.warning(f"CoinGecko market fetch failed ({e.kind}): {e}")
            self._mark_failure(e)
            return self._result([])

        self._mark_success()
        logger.debug(f"CoinGecko returned {len(items)} market rows for {len(ids)} ids")
        return self._result(items)

    async def fetch_prices(self, ids: List[str]) -> Dict[str, Dict[str, float]]:
        """
        Price-only lookup via /simple/price.

        Returns:
            Mapping of asset id → {"usd": price, "usd_24h_change": pct}; empty on failure
        """
        try:
            prices = await self.client.get_simple_price(ids)
        except ProviderError as e:
            logger.warning(f"CoinGecko price fetch failed ({e.kind}): {e}")
            self._mark_failure(e)
            return {}
        self._mark_success()
        return prices

    async def fetch_global(self) -> GlobalFetchResult:
        """Fetch /global and normalize it."""
        try:
            payload = await self.client.get_global()
        except ProviderError as e:
            logger.warning(f"CoinGecko global fetch failed ({e.kind}): {e}")
            self._mark_failure(e)
            return GlobalFetchResult(status=self.status(), record=None)

        self._mark_success()
        record = normalize_global(payload, fetched_at=current_utc_datetime())
        return GlobalFetchResult(status=self.status(), record=record)


__all__ = ["CoinGeckoProvider", "CoinGeckoAPIClient"]
