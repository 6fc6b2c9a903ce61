"""
Normalized Data Schemas

This module defines Pydantic models for all market data and status types.
These schemas provide a unified, provider-agnostic data format.

Key Principle:
    Regardless of which tier supplies the data (exchange aggregator, REST provider,
    or the bundled static dataset), it gets normalized into these standardized
    schemas. Downstream views only ever see CryptoAssetSnapshot records and
    ConnectionStatus objects.

Models:
    - CryptoAssetSnapshot: Canonical per-asset price record
    - GlobalMarketSnapshot: Aggregate market totals
    - ConnectionStatus: Per-provider connection state
    - FetchResult / GlobalFetchResult: What an adapter returns from one fetch
    - BestPrice: Cross-exchange best bid/ask for a symbol
    - FeedState / GlobalFeedState: Consumer-facing view of the market feed
"""

import math
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict


# ============================================
# Enumerations
# ============================================

class Tier(IntEnum):
    """
    Prioritized data sources. A lower value wins when several are eligible.
    """

    EXCHANGE = 1
    REST = 2
    STATIC = 3


class ConnectionState(str, Enum):
    """
    Connection state of a provider or upstream link.

    DEGRADED covers both "reconnecting" and "partially available".
    """

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class RiskLevel(str, Enum):
    """Risk bucket derived from the absolute 24h change."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ============================================
# Canonical Asset Snapshot
# ============================================

class CryptoAssetSnapshot(BaseModel):
    """
    Canonical per-asset price record.

    Every tier is normalized into this shape. A snapshot list is replaced
    wholesale on each successful fetch and never merged with older data.

    Attributes:
        id: Provider-independent asset id (e.g., "bitcoin")
        name: Display name (e.g., "Bitcoin")
        symbol: Ticker symbol without quote currency (e.g., "BTC")
        price: Last price in USD
        change_24h: 24h price change in percent
        volume_24h: 24h traded volume in USD
        market_cap: Market capitalization in USD (0 when unknown)
        risk_level: Bucket derived from |change_24h|
        sparkline: Recent prices, oldest first
        image: Reference image URL
        last_updated: When the provider last updated this record (UTC)

    Example:
        >>> snap = CryptoAssetSnapshot(
        ...     id="bitcoin",
        ...     name="Bitcoin",
        ...     symbol="BTC",
        ...     price=67234.56,
        ...     change_24h=-2.34,
        ...     volume_24h=28500000000,
        ...     market_cap=1320000000000,
        ...     risk_level="low",
        ...     last_updated=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        ... )
    """

    id: str = Field(..., min_length=1, description="Asset id", examples=["bitcoin"])

    name: str = Field(..., description="Display name", examples=["Bitcoin"])

    symbol: str = Field(..., description="Ticker symbol in uppercase", examples=["BTC"])

    price: float = Field(..., ge=0, description="Last price in USD")

    change_24h: float = Field(0.0, description="24h price change in percent")

    volume_24h: float = Field(0.0, ge=0, description="24h traded volume in USD")

    market_cap: float = Field(0.0, ge=0, description="Market capitalization in USD")

    risk_level: RiskLevel = Field(..., description="Risk bucket derived from |change_24h|")

    sparkline: List[float] = Field(
        default_factory=list,
        description="Recent prices, oldest first (finite values only)"
    )

    image: Optional[str] = Field(None, description="Reference image URL")

    last_updated: datetime = Field(..., description="Last provider update in UTC")

    @field_validator('symbol')
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Ensure symbol is uppercase"""
        return v.upper()

    @field_validator('sparkline')
    @classmethod
    def validate_sparkline(cls, v: List[float]) -> List[float]:
        """Reject non-finite sparkline points"""
        if any(not math.isfinite(p) for p in v):
            raise ValueError("sparkline must contain only finite values")
        return v

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "bitcoin",
                "name": "Bitcoin",
                "symbol": "BTC",
                "price": 67234.56,
                "change_24h": -2.34,
                "volume_24h": 28500000000.0,
                "market_cap": 1320000000000.0,
                "risk_level": "low",
                "sparkline": [67010.2, 67120.9, 67234.56],
                "image": "https://assets.coingecko.com/coins/images/1/large/bitcoin.png",
                "last_updated": "2024-01-01T12:00:00Z"
            }
        }
    )


# ============================================
# Global Market Snapshot
# ============================================

class GlobalMarketSnapshot(BaseModel):
    """
    Aggregate market totals.

    Refreshed on its own, slower cadence from a single provider; there is no
    tier fallback for global data.
    """

    total_market_cap_usd: float = Field(0.0, ge=0, description="Total market cap in USD")

    total_volume_usd: float = Field(0.0, ge=0, description="Total 24h volume in USD")

    market_cap_change_24h_pct: float = Field(0.0, description="24h change of total market cap in percent")

    dominance: Dict[str, float] = Field(
        default_factory=dict,
        description="Market cap dominance in percent keyed by lowercase symbol"
    )

    active_cryptocurrencies: int = Field(0, ge=0)

    markets: int = Field(0, ge=0)

    last_updated: datetime = Field(..., description="Provider update time in UTC")


# ============================================
# Connection Status
# ============================================

class ConnectionStatus(BaseModel):
    """
    Connection state of one provider adapter.

    Attributes:
        provider: Adapter name
        state: Current ConnectionState
        last_error: Message of the most recent failure (cleared on success)
        last_success: Time of the most recent successful fetch
        active_connections: Number of live upstream links
        links: Per-upstream state (exchange aggregator only)
    """

    provider: str

    state: ConnectionState = ConnectionState.DISCONNECTED

    last_error: Optional[str] = None

    last_success: Optional[datetime] = None

    active_connections: int = Field(0, ge=0)

    links: Dict[str, ConnectionState] = Field(default_factory=dict)

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED


# ============================================
# Adapter Fetch Results
# ============================================

class FetchResult(BaseModel):
    """
    Outcome of one ProviderAdapter.fetch_snapshots() call.

    The payload keeps the provider's raw item shape; the Normalizer turns it
    into CryptoAssetSnapshot records once the tier is selected.
    """

    tier: Tier

    status: ConnectionStatus

    payload: List[Dict[str, Any]] = Field(default_factory=list)

    fetched_at: datetime

    @property
    def record_count(self) -> int:
        return len(self.payload)

    @property
    def ok(self) -> bool:
        return self.status.state != ConnectionState.ERROR


class GlobalFetchResult(BaseModel):
    """Outcome of one ProviderAdapter.fetch_global() call."""

    status: ConnectionStatus

    record: Optional[GlobalMarketSnapshot] = None

    @property
    def ok(self) -> bool:
        return self.record is not None


# ============================================
# Cross-Exchange Best Price
# ============================================

class VenuePrice(BaseModel):
    """Price of a symbol on one exchange."""

    exchange: str
    price: float = Field(..., ge=0)
    volume: float = Field(0.0, ge=0)


class BestPrice(BaseModel):
    """
    Highest and lowest quoted price for a symbol across connected exchanges.

    Example:
        >>> BestPrice(
        ...     symbol="BTCUSDT",
        ...     best_bid=VenuePrice(exchange="okx", price=67250.0),
        ...     best_ask=VenuePrice(exchange="gateio", price=67210.0),
        ...     price_spread=40.0,
        ...     exchanges=2
        ... )
    """

    symbol: str
    best_bid: VenuePrice
    best_ask: VenuePrice
    price_spread: float
    exchanges: int


class MarketSummary(BaseModel):
    """
    Overview of the merged exchange tickers.

    Attributes:
        total_symbols: Symbols quoted by at least one connected venue
        total_volume: Sum of the winning (most liquid) USDT volume per symbol
        exchanges: Number of configured venues
        active_connections: Venues currently connected
        links: Per-venue connection state
        last_update: Most recent successful refresh of any venue
    """

    total_symbols: int = Field(0, ge=0)
    total_volume: float = Field(0.0, ge=0)
    exchanges: int = Field(0, ge=0)
    active_connections: int = Field(0, ge=0)
    links: Dict[str, ConnectionState] = Field(default_factory=dict)
    last_update: Optional[datetime] = None


# ============================================
# Consumer-Facing Feed State
# ============================================

class FeedState(BaseModel):
    """
    What consumers of the market feed see.

    `error` is only set when no tier (static included) produced a record.
    """

    records: List[CryptoAssetSnapshot] = Field(default_factory=list)

    active_tier: Optional[Tier] = None

    connection_summary: Dict[str, ConnectionStatus] = Field(default_factory=dict)

    last_update: Optional[datetime] = None

    error: Optional[str] = None


class GlobalFeedState(BaseModel):
    """What consumers of the global market data see."""

    data: Optional[GlobalMarketSnapshot] = None

    status: Optional[ConnectionStatus] = None

    last_update: Optional[datetime] = None

    error: Optional[str] = None
