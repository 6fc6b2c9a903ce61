"""
Exchange Link Base Classes

An exchange link is one upstream connection of the exchange aggregator. Each link:
- Owns its own ConnectionState and last error
- Keeps a per-symbol map of USDT-quoted tickers in a common shape
- Replaces that map on every successful refresh and clears it on failure
- Notifies the aggregator when its state changes

Common ticker shape:
    {
        "exchange": "okx",
        "ticker": "BTCUSDT",
        "last": 67234.5,
        "change_pct": -2.31,
        "volume": 1234.5,           # base asset volume (24h)
        "quote_volume": 83000000.0, # USDT volume (24h)
        "timestamp": 1704110400000  # ms, or None when the venue sends none
    }
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from core.errors import ProviderError
from core.logging import get_logger
from core.normalizer import _to_float, canonical_ticker
from core.rate_limited_client import RateLimitedClient, RateLimiter
from core.schemas import ConnectionState, ConnectionStatus
from core.utils.time import current_utc_datetime

logger = get_logger(__name__)

QUOTE = "USDT"


def make_ticker(
    exchange: str,
    raw_symbol: str,
    last: Any,
    change_pct: Any,
    volume: Any,
    quote_volume: Any,
    timestamp: Any = None
) -> Optional[Dict[str, Any]]:
    """
    Build a common ticker dict, or None for non-USDT pairs and unusable prices.

    Example:
        >>> make_ticker("gateio", "BTC_USDT", "67000", "1.2", "10", "670000")["ticker"]
        'BTCUSDT'
    """
    ticker = canonical_ticker(raw_symbol or "")
    if not ticker.endswith(QUOTE) or len(ticker) == len(QUOTE):
        return None
    price = _to_float(last)
    if price <= 0:
        return None
    return {
        "exchange": exchange,
        "ticker": ticker,
        "last": price,
        "change_pct": _to_float(change_pct),
        "volume": max(_to_float(volume), 0.0),
        "quote_volume": max(_to_float(quote_volume), 0.0),
        "timestamp": timestamp,
    }


class ExchangeLink(ABC):
    """
    Abstract upstream link of the exchange aggregator.

    Attributes:
        name: Venue identifier ("okx", "gateio", "binance")
        state: Current ConnectionState
        tickers: Latest USDT tickers keyed by canonical ticker
        on_change: Callback invoked with the link after every state change
    """

    name: str

    def __init__(self):
        self.state = ConnectionState.DISCONNECTED
        self.last_error: Optional[str] = None
        self.last_success = None
        self.tickers: Dict[str, Dict[str, Any]] = {}
        self.on_change: Optional[Callable[["ExchangeLink"], None]] = None

    # ============================================
    # State Handling
    # ============================================

    def _set_state(self, state: ConnectionState, error: Optional[str] = None) -> None:
        previous = self.state
        self.state = state
        if state == ConnectionState.CONNECTED:
            self.last_error = None
            self.last_success = current_utc_datetime()
        elif error is not None:
            self.last_error = error

        if state in (ConnectionState.ERROR, ConnectionState.DISCONNECTED, ConnectionState.DEGRADED):
            self.tickers = {}

        if previous != state:
            logger.info(f"{self.name} link: {previous.value} → {state.value}")
            if self.on_change is not None:
                self.on_change(self)

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            provider=self.name,
            state=self.state,
            last_error=self.last_error,
            last_success=self.last_success,
            active_connections=1 if self.is_connected else 0,
        )

    # ============================================
    # Lifecycle
    # ============================================

    @abstractmethod
    async def start(self) -> None:
        """Open the link."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Close the link. Should not raise."""
        ...

    async def refresh(self) -> None:
        """Refresh tickers (no-op for streaming links)."""
        return None

    async def reconnect(self) -> None:
        """Re-open a link that has given up (no-op by default)."""
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(state={self.state.value}, tickers={len(self.tickers)})>"


class RestTickerLink(ExchangeLink):
    """
    Exchange link polling a spot tickers REST endpoint.

    Subclasses set the endpoint paths and implement parse().
    Each instance owns a zero-spacing RateLimiter, separate from the REST
    provider's gate.
    """

    tickers_path: str
    tickers_params: Optional[Dict[str, Any]] = None
    probe_path: str

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[RateLimitedClient] = None):
        super().__init__()
        self.client = client or RateLimitedClient(
            base_url,
            limiter=RateLimiter(min_spacing=0.0),
            timeout=timeout,
            provider=self.name,
        )

    @abstractmethod
    def parse(self, data: Any) -> List[Dict[str, Any]]:
        """
        Turn the raw response into common ticker dicts.

        Raises:
            MalformedPayload: If the response does not have the venue's shape
        """
        ...

    async def start(self) -> None:
        await self.client.start()
        if self.state == ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.CONNECTING)

    async def stop(self) -> None:
        await self.client.close()
        self._set_state(ConnectionState.DISCONNECTED)

    async def refresh(self) -> None:
        """
        Fetch and replace the ticker map.

        Expected failures clear the map and move the link to ERROR; they do not raise.
        """
        try:
            data = await self.client.get(self.tickers_path, self.tickers_params)
            parsed = self.parse(data)
        except ProviderError as e:
            logger.warning(f"{self.name} tickers refresh failed ({e.kind}): {e}")
            self._set_state(ConnectionState.ERROR, str(e))
            return

        self.tickers = {item["ticker"]: item for item in parsed}
        self._set_state(ConnectionState.CONNECTED)
        logger.debug(f"{self.name}: {len(self.tickers)} USDT tickers")

    async def probe(self) -> bool:
        """Lightweight reachability check against the venue's time endpoint."""
        try:
            await self.client.get(self.probe_path)
            return True
        except ProviderError as e:
            logger.debug(f"{self.name} probe failed: {e}")
            return False
