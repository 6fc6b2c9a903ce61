"""
Provider Interface — Abstract Contract for All Data Tiers

This module defines the abstract base class that every provider adapter must implement.
By enforcing a consistent interface, the market feed can poll, select and normalize
tiers without knowing which upstream sits behind each of them.

Adapters:
    - ExchangeAggregatorProvider (Tier.EXCHANGE): OKX, Gate.io and Binance links
    - CoinGeckoProvider (Tier.REST): rate-limited public REST API
    - StaticProvider (Tier.STATIC): bundled dataset, always available

Error Policy:
    Expected failures (network, HTTP, timeout, malformed payload) are caught
    inside the adapter and reported through the returned ConnectionStatus.
    They never escape fetch_snapshots() / fetch_global(). Programmer errors
    are not caught and propagate to the caller.

Example:
    class MyProvider(ProviderAdapter):
        name = "my_provider"
        tier = Tier.REST

        async def fetch_snapshots(self, ids):
            ...
            return FetchResult(tier=self.tier, status=self.status(), payload=items, fetched_at=now)
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from core.schemas import ConnectionState, ConnectionStatus, FetchResult, GlobalFetchResult, Tier
from core.utils.time import current_utc_datetime


class ProviderAdapter(ABC):
    """
    Abstract Base Class for Provider Adapters

    Class Attributes:
        name: Unique identifier for the adapter (lowercase)
        tier: Which Tier this adapter supplies

    Abstract Methods (MUST be implemented):
        - fetch_snapshots: Fetch raw records for a set of asset ids

    Optional Methods (can be overridden):
        - fetch_global: Fetch aggregate market totals (REST/static tiers)
        - initialize / shutdown: Open and release upstream resources
        - health_check: Lightweight reachability check
    """

    name: str
    """Unique adapter identifier (lowercase). Example: "coingecko", "static" """

    tier: Tier
    """The tier this adapter supplies"""

    def __init__(self):
        self._state = ConnectionState.DISCONNECTED
        self._last_error: Optional[str] = None
        self._last_success = None

    # ============================================
    # Fetch Methods
    # ============================================

    @abstractmethod
    async def fetch_snapshots(self, ids: List[str]) -> FetchResult:
        """
        Fetch raw per-asset records for the given asset ids.

        Args:
            ids: Asset ids (e.g., ["bitcoin", "ethereum"])

        Returns:
            FetchResult carrying the provider's raw items and the status after the fetch.
            On an expected failure the payload is empty and status.state is ERROR.
        """
        ...

    async def fetch_global(self) -> GlobalFetchResult:
        """
        Fetch aggregate market totals.

        Raises:
            NotImplementedError: If this tier does not provide global data
        """
        raise NotImplementedError(f"{self.name} does not provide global market data")

    # ============================================
    # Status
    # ============================================

    def status(self) -> ConnectionStatus:
        """
        Current connection status of this adapter.
        """
        return ConnectionStatus(
            provider=self.name,
            state=self._state,
            last_error=self._last_error,
            last_success=self._last_success,
            active_connections=1 if self._state == ConnectionState.CONNECTED else 0,
        )

    def _mark_success(self) -> None:
        self._state = ConnectionState.CONNECTED
        self._last_error = None
        self._last_success = current_utc_datetime()

    def _mark_failure(self, error) -> None:
        self._state = ConnectionState.ERROR
        self._last_error = str(error)

    # ============================================
    # Optional Lifecycle Methods
    # ============================================

    async def initialize(self) -> None:
        """
        Open upstream resources (HTTP sessions, WebSocket links).

        Should be idempotent. Default implementation only moves to CONNECTING.
        """
        if self._state == ConnectionState.DISCONNECTED:
            self._state = ConnectionState.CONNECTING

    async def shutdown(self) -> None:
        """
        Release upstream resources. Should not raise.
        """
        self._state = ConnectionState.DISCONNECTED

    async def health_check(self) -> bool:
        """
        Check whether the upstream is reachable.

        Returns:
            bool: True if reachable. Never raises.
        """
        return True

    async def reconnect(self) -> None:
        """
        Re-open upstream links that gave up. Called on a manual retry.

        Default implementation does nothing.
        """
        return None

    def _result(self, payload=None) -> FetchResult:
        """Build a FetchResult from the current status."""
        return FetchResult(
            tier=self.tier,
            status=self.status(),
            payload=payload or [],
            fetched_at=current_utc_datetime(),
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}', tier={self.tier.name})>"
