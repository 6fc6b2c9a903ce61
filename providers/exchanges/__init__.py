"""
Exchange Aggregator Provider

This module implements the ProviderAdapter for the exchange tier. It maintains
several concurrent upstream links and merges their spot tickers.

Links:
    - OKX      REST  /api/v5/market/tickers?instType=SPOT
    - Gate.io  REST  /api/v4/spot/tickers
    - Binance  WS    !ticker@arr (optional, see EXCHANGE_WS_ENABLED)

Aggregation:
    For every symbol the ticker of the most liquid connected venue (highest
    USDT volume) wins. The result is then filtered to the requested asset ids.

Status:
    - active_connections = number of links currently CONNECTED
    - CONNECTED when every link is up, DEGRADED when only some are,
      ERROR when none is
    - on_status_change(status) fires whenever a link changes state, so the
      market feed can re-run tier selection without waiting for a cycle

Structure:
    providers/exchanges/
    ├── __init__.py   # This file (ExchangeAggregatorProvider)
    ├── base.py       # ExchangeLink / RestTickerLink
    ├── okx.py        # OKXLink
    ├── gateio.py     # GateioLink
    └── binance.py    # BinanceTickerLink (websockets)
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from core.logging import get_logger
from core.normalizer import canonical_ticker, resolve_ticker
from core.provider_interface import ProviderAdapter
from core.schemas import (
    BestPrice,
    ConnectionState,
    ConnectionStatus,
    FetchResult,
    MarketSummary,
    Tier,
    VenuePrice,
)
from .base import ExchangeLink, RestTickerLink
from .binance import BinanceTickerLink
from .gateio import GateioLink
from .okx import OKXLink

logger = get_logger(__name__)


def default_links() -> List[ExchangeLink]:
    """Build the configured links from settings."""
    from core.config import settings

    links: List[ExchangeLink] = [
        OKXLink(settings.okx_base_url, timeout=settings.rest_timeout),
        GateioLink(settings.gateio_base_url, timeout=settings.rest_timeout),
    ]
    if settings.exchange_ws_enabled:
        links.append(BinanceTickerLink(
            settings.binance_ws_url,
            max_reconnect_attempts=settings.ws_max_reconnect_attempts,
        ))
    return links


class ExchangeAggregatorProvider(ProviderAdapter):
    """
    Exchange tier adapter (Tier.EXCHANGE).

    Attributes:
        links: Upstream links keyed by venue name
        on_status_change: Optional callback receiving the aggregated ConnectionStatus

    Example:
        >>> provider = ExchangeAggregatorProvider()
        >>> await provider.initialize()
        >>> result = await provider.fetch_snapshots(["bitcoin", "ethereum"])
        >>> result.status.active_connections
        2
        >>> await provider.shutdown()
    """

    name = "exchanges"
    tier = Tier.EXCHANGE

    def __init__(self, links: Optional[List[ExchangeLink]] = None):
        super().__init__()
        self.links: Dict[str, ExchangeLink] = {}
        for link in (links if links is not None else default_links()):
            link.on_change = self._on_link_change
            self.links[link.name] = link
        self.on_status_change: Optional[Callable[[ConnectionStatus], None]] = None

    # ============================================
    # Lifecycle
    # ============================================

    async def initialize(self) -> None:
        logger.info(f"Initializing exchange aggregator ({', '.join(self.links)})...")
        await super().initialize()
        await asyncio.gather(*(link.start() for link in self.links.values()))
        self._recompute_state()
        logger.info("✓ Exchange aggregator initialized")

    async def shutdown(self) -> None:
        logger.info("Shutting down exchange aggregator...")
        results = await asyncio.gather(
            *(link.stop() for link in self.links.values()),
            return_exceptions=True
        )
        for link, result in zip(self.links.values(), results):
            if isinstance(result, Exception):
                logger.error(f"Error stopping {link.name} link: {result}")
        self._state = ConnectionState.DISCONNECTED

    async def health_check(self) -> bool:
        rest_links = [link for link in self.links.values() if isinstance(link, RestTickerLink)]
        if not rest_links:
            return self.active_connections > 0
        results = await asyncio.gather(*(link.probe() for link in rest_links))
        return any(results)

    async def reconnect(self) -> None:
        """Restart links that gave up."""
        await asyncio.gather(*(link.reconnect() for link in self.links.values()))

    # ============================================
    # Status
    # ============================================

    @property
    def active_connections(self) -> int:
        return sum(1 for link in self.links.values() if link.is_connected)

    def _recompute_state(self) -> ConnectionState:
        active = self.active_connections
        if not self.links or active == 0:
            if any(link.state == ConnectionState.CONNECTING for link in self.links.values()):
                state = ConnectionState.CONNECTING
            elif self._state == ConnectionState.DISCONNECTED:
                state = ConnectionState.DISCONNECTED
            else:
                state = ConnectionState.ERROR
        elif active < len(self.links):
            state = ConnectionState.DEGRADED
        else:
            state = ConnectionState.CONNECTED

        self._state = state
        if state == ConnectionState.ERROR:
            errors = [f"{link.name}: {link.last_error}" for link in self.links.values() if link.last_error]
            self._last_error = "; ".join(errors) or "No exchange links connected"
        elif state in (ConnectionState.CONNECTED, ConnectionState.DEGRADED):
            self._last_error = None
        return state

    def status(self) -> ConnectionStatus:
        status = super().status()
        status.active_connections = self.active_connections
        status.links = {name: link.state for name, link in self.links.items()}
        return status

    def _on_link_change(self, link: ExchangeLink) -> None:
        previous = self._state
        current = self._recompute_state()
        logger.debug(f"Link {link.name} is {link.state.value}; aggregator {previous.value} → {current.value}")
        if self.on_status_change is not None:
            self.on_status_change(self.status())

    # ============================================
    # Fetch Methods
    # ============================================

    async def fetch_snapshots(self, ids: List[str]) -> FetchResult:
        """
        Refresh the REST links concurrently and return the aggregated tickers for ids.

        Returns:
            FetchResult with common ticker dicts (one per requested asset found)
        """
        if self._state == ConnectionState.DISCONNECTED:
            self._state = ConnectionState.CONNECTING

        await asyncio.gather(*(link.refresh() for link in self.links.values()))
        self._recompute_state()

        aggregated = self.aggregate()
        wanted = set(ids)
        payload = [
            ticker for symbol, ticker in aggregated.items()
            if resolve_ticker(symbol)["id"] in wanted
        ]

        if payload:
            self._last_success = max(
                (link.last_success for link in self.links.values() if link.last_success),
                default=None
            )
        logger.debug(
            f"Exchange aggregator: {self.active_connections}/{len(self.links)} links, "
            f"{len(aggregated)} symbols, {len(payload)} matched"
        )
        return self._result(payload)

    def aggregate(self) -> Dict[str, Dict[str, Any]]:
        """
        Merge tickers of connected links; the highest USDT volume wins per symbol.
        """
        merged: Dict[str, Dict[str, Any]] = {}
        for link in self.links.values():
            if not link.is_connected:
                continue
            for symbol, ticker in link.tickers.items():
                current = merged.get(symbol)
                if current is None or ticker["quote_volume"] > current["quote_volume"]:
                    merged[symbol] = ticker
        return merged

    # ============================================
    # Cross-Exchange Queries
    # ============================================

    def get_best_price(self, symbol: str) -> Optional[BestPrice]:
        """
        Highest and lowest price for a symbol across connected venues.

        Args:
            symbol: Ticker ("BTCUSDT", "BTC-USDT") or base asset ("BTC")

        Returns:
            BestPrice, or None when no connected venue quotes the symbol
        """
        ticker = canonical_ticker(symbol)
        if not ticker.endswith("USDT"):
            ticker = f"{ticker}USDT"

        venues = [
            VenuePrice(exchange=link.name, price=link.tickers[ticker]["last"],
                       volume=link.tickers[ticker]["quote_volume"])
            for link in self.links.values()
            if link.is_connected and ticker in link.tickers
        ]
        if not venues:
            return None

        best_bid = max(venues, key=lambda v: v.price)
        best_ask = min(venues, key=lambda v: v.price)
        return BestPrice(
            symbol=ticker,
            best_bid=best_bid,
            best_ask=best_ask,
            price_spread=best_bid.price - best_ask.price,
            exchanges=len(venues),
        )

    # ============================================
    # Market Overview
    # ============================================

    def get_market_summary(self) -> MarketSummary:
        """Symbol count, total volume and link health of the merged tickers."""
        merged = self.aggregate()
        successes = [link.last_success for link in self.links.values() if link.last_success is not None]
        return MarketSummary(
            total_symbols=len(merged),
            total_volume=sum(ticker["quote_volume"] for ticker in merged.values()),
            exchanges=len(self.links),
            active_connections=self.active_connections,
            links={name: link.state for name, link in self.links.items()},
            last_update=max(successes) if successes else None,
        )

    def top_volume(self, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Most liquid symbols, highest USDT volume first.

        Example:
            >>> provider.top_volume(3)
            [{'ticker': 'BTCUSDT', ...}, {'ticker': 'ETHUSDT', ...}, {'ticker': 'SOLUSDT', ...}]
        """
        ranked = sorted(self.aggregate().values(), key=lambda t: t["quote_volume"], reverse=True)
        return ranked[:max(limit, 0)]

    def high_volatility(self, threshold: float = 10.0) -> List[Dict[str, Any]]:
        """
        Symbols whose 24h change exceeds ±threshold percent on any connected venue.

        The merged ticker is returned for each symbol, largest move first.
        """
        moving = set()
        for link in self.links.values():
            if not link.is_connected:
                continue
            for symbol, ticker in link.tickers.items():
                if abs(ticker["change_pct"]) > threshold:
                    moving.add(symbol)

        merged = self.aggregate()
        hits = [merged[symbol] for symbol in moving if symbol in merged]
        return sorted(hits, key=lambda t: abs(t["change_pct"]), reverse=True)

    def get_exchange_data(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Status and current tickers of one venue.

        Returns:
            {"status": ConnectionStatus, "tickers": [...]} or None for an unknown venue
        """
        link = self.links.get(name.lower())
        if link is None:
            return None
        return {"status": link.status(), "tickers": list(link.tickers.values())}


__all__ = [
    "ExchangeAggregatorProvider",
    "ExchangeLink",
    "RestTickerLink",
    "OKXLink",
    "GateioLink",
    "BinanceTickerLink",
    "default_links",
]
