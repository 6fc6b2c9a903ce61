"""
Payload Normalizer

Maps provider-specific payloads to the canonical CryptoAssetSnapshot shape.
Every function here is pure: no I/O, no clock reads, same input → equal output.

Supported payload shapes:
    EXCHANGE - exchange tickers produced by the aggregator links:
        {"ticker": "BTCUSDT", "last": 67234.5, "change_pct": -2.3,
         "volume": 1234.5, "quote_volume": 83000000.0, "timestamp": 1704110400000}
        Raw Binance ("s", "c", "P", "v", "q", "E") keys are accepted as well.

    REST / STATIC - CoinGecko /coins/markets items:
        {"id": "bitcoin", "name": "Bitcoin", "symbol": "btc", "current_price": 67234.5,
         "price_change_percentage_24h": -2.3, "total_volume": ..., "market_cap": ...,
         "sparkline_in_7d": {"price": [...]}, "image": "...", "last_updated": "2024-...Z"}

Missing or invalid fields are defaulted rather than rejected.
"""

import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from core.logging import get_logger
from core.schemas import CryptoAssetSnapshot, GlobalMarketSnapshot, RiskLevel, Tier
from core.utils.time import EPOCH, parse_timestamp

logger = get_logger(__name__)


# ============================================
# Symbol Lookup
# ============================================

# Exchange ticker → canonical asset identity
SYMBOL_LOOKUP: Dict[str, Dict[str, str]] = {
    "BTCUSDT": {"id": "bitcoin", "name": "Bitcoin", "symbol": "BTC"},
    "ETHUSDT": {"id": "ethereum", "name": "Ethereum", "symbol": "ETH"},
    "ADAUSDT": {"id": "cardano", "name": "Cardano", "symbol": "ADA"},
    "SOLUSDT": {"id": "solana", "name": "Solana", "symbol": "SOL"},
    "BNBUSDT": {"id": "binancecoin", "name": "BNB", "symbol": "BNB"},
    "XRPUSDT": {"id": "ripple", "name": "XRP", "symbol": "XRP"},
    "DOGEUSDT": {"id": "dogecoin", "name": "Dogecoin", "symbol": "DOGE"},
    "MATICUSDT": {"id": "matic-network", "name": "Polygon", "symbol": "MATIC"},
    "POLUSDT": {"id": "polygon-ecosystem-token", "name": "POL (ex-MATIC)", "symbol": "POL"},
    "DOTUSDT": {"id": "polkadot", "name": "Polkadot", "symbol": "DOT"},
    "AVAXUSDT": {"id": "avalanche-2", "name": "Avalanche", "symbol": "AVAX"},
    "LINKUSDT": {"id": "chainlink", "name": "Chainlink", "symbol": "LINK"},
    "LTCUSDT": {"id": "litecoin", "name": "Litecoin", "symbol": "LTC"},
    "TRXUSDT": {"id": "tron", "name": "TRON", "symbol": "TRX"},
}

# Short names accepted in addition to canonical asset ids
ASSET_ALIASES: Dict[str, str] = {
    "xrp": "ripple",
    "polygon": "matic-network",
    "bnb": "binancecoin",
}

# Longest first so "FDUSD" is tried before "USD"
QUOTE_SUFFIXES = ("FDUSD", "USDT", "USDC", "BUSD", "USD")


def canonical_ticker(ticker: str) -> str:
    """
    Strip separators and uppercase an exchange ticker.

    Example:
        >>> canonical_ticker("btc-usdt")
        'BTCUSDT'
    """
    return ticker.replace("-", "").replace("_", "").replace("/", "").strip().upper()


def resolve_ticker(ticker: str) -> Dict[str, str]:
    """
    Resolve an exchange ticker to {id, name, symbol}.

    Known tickers come from SYMBOL_LOOKUP; unknown ones degrade to the base
    asset obtained by stripping a known quote-currency suffix.

    Examples:
        >>> resolve_ticker("BTCUSDT")
        {'id': 'bitcoin', 'name': 'Bitcoin', 'symbol': 'BTC'}
        >>> resolve_ticker("PEPE_USDT")
        {'id': 'pepe', 'name': 'PEPE', 'symbol': 'PEPE'}
    """
    key = canonical_ticker(ticker)
    known = SYMBOL_LOOKUP.get(key)
    if known:
        return dict(known)

    base = key
    for suffix in QUOTE_SUFFIXES:
        if key.endswith(suffix) and len(key) > len(suffix):
            base = key[: -len(suffix)]
            break

    return {"id": base.lower(), "name": base, "symbol": base}


def canonical_asset_id(asset_id: str) -> str:
    """
    Lowercase an asset id and map an accepted alias to its canonical id.

    Example:
        >>> canonical_asset_id(" XRP")
        'ripple'
    """
    key = asset_id.strip().lower()
    return ASSET_ALIASES.get(key, key)


def ticker_for_id(asset_id: str, quote: str = "USDT") -> Optional[str]:
    """Reverse lookup: asset id → exchange ticker (None if unknown)."""
    for ticker, identity in SYMBOL_LOOKUP.items():
        if identity["id"] == asset_id and ticker.endswith(quote):
            return ticker
    return None


# ============================================
# Coercion Helpers
# ============================================

def _to_float(value: Any, default: float = 0.0) -> float:
    """Coerce a provider value to a finite float, or return default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if math.isfinite(result) else default


def _to_int(value: Any, default: int = 0) -> int:
    return int(_to_float(value, float(default)))


def _first(item: Dict[str, Any], *keys: str) -> Any:
    """Return the first non-None value among keys."""
    for key in keys:
        value = item.get(key)
        if value is not None:
            return value
    return None


def _sparkline(value: Any) -> List[float]:
    """Extract a finite, ordered price list from list or {"price": [...]} shapes."""
    if isinstance(value, dict):
        value = value.get("price")
    if not isinstance(value, (list, tuple)):
        return []
    points = []
    for point in value:
        number = _to_float(point, default=math.nan)
        if math.isfinite(number):
            points.append(number)
    return points


# ============================================
# Risk Derivation
# ============================================

def calculate_risk_level(change_24h: float) -> RiskLevel:
    """
    Derive the risk bucket from the absolute 24h change.

    Examples:
        >>> calculate_risk_level(11)
        <RiskLevel.HIGH: 'high'>
        >>> calculate_risk_level(-7)
        <RiskLevel.MEDIUM: 'medium'>
        >>> calculate_risk_level(2)
        <RiskLevel.LOW: 'low'>
    """
    magnitude = abs(_to_float(change_24h))
    if magnitude > 10:
        return RiskLevel.HIGH
    if magnitude > 5:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


# ============================================
# Per-Shape Normalizers
# ============================================

def normalize_exchange_ticker(item: Dict[str, Any], fetched_at: datetime = EPOCH) -> Optional[CryptoAssetSnapshot]:
    """
    Normalize one exchange ticker.

    Returns:
        CryptoAssetSnapshot, or None when the item carries no ticker at all
    """
    ticker = _first(item, "ticker", "symbol", "s", "instId", "currency_pair")
    if not ticker or not isinstance(ticker, str):
        return None

    identity = resolve_ticker(ticker)
    price = max(_to_float(_first(item, "last", "price", "c")), 0.0)
    change = _to_float(_first(item, "change_pct", "change24h", "P"))

    quote_volume = _to_float(_first(item, "quote_volume", "q"), default=-1.0)
    if quote_volume < 0:
        # Base volume priced at last trade
        quote_volume = _to_float(_first(item, "volume", "v")) * price

    return CryptoAssetSnapshot(
        id=identity["id"],
        name=identity["name"],
        symbol=identity["symbol"],
        price=price,
        change_24h=change,
        volume_24h=max(quote_volume, 0.0),
        market_cap=0.0,
        risk_level=calculate_risk_level(change),
        sparkline=[],
        image=None,
        last_updated=parse_timestamp(_first(item, "timestamp", "E", "ts"), default=fetched_at),
    )


def normalize_market_item(item: Dict[str, Any], fetched_at: datetime = EPOCH) -> Optional[CryptoAssetSnapshot]:
    """
    Normalize one CoinGecko-shaped market item (REST and static tiers).

    Returns:
        CryptoAssetSnapshot, or None when the item has no id
    """
    asset_id = item.get("id")
    if not asset_id or not isinstance(asset_id, str):
        return None

    change = _to_float(_first(item, "price_change_percentage_24h", "price_change_percentage_24h_in_currency"))
    symbol = item.get("symbol") if isinstance(item.get("symbol"), str) and item.get("symbol") else asset_id
    name = item.get("name") if isinstance(item.get("name"), str) and item.get("name") else asset_id.replace("-", " ").title()
    image = item.get("image")
    if isinstance(image, dict):
        image = _first(image, "large", "small", "thumb")

    return CryptoAssetSnapshot(
        id=asset_id,
        name=name,
        symbol=symbol.upper(),
        price=max(_to_float(item.get("current_price")), 0.0),
        change_24h=change,
        volume_24h=max(_to_float(item.get("total_volume")), 0.0),
        market_cap=max(_to_float(item.get("market_cap")), 0.0),
        risk_level=calculate_risk_level(change),
        sparkline=_sparkline(_first(item, "sparkline_in_7d", "sparkline")),
        image=image if isinstance(image, str) else None,
        last_updated=parse_timestamp(item.get("last_updated"), default=fetched_at),
    )


# ============================================
# Public Entry Points
# ============================================

def normalize(
    tier: Tier,
    payload: Iterable[Dict[str, Any]],
    fetched_at: Optional[datetime] = None
) -> List[CryptoAssetSnapshot]:
    """
    Normalize a raw tier payload into canonical snapshots.

    Args:
        tier: Which tier produced the payload (selects the item shape)
        payload: Raw items from the adapter
        fetched_at: Default for items without their own timestamp (Unix epoch if None)

    Returns:
        Snapshots in payload order; items that cannot be identified are skipped

    Example:
        >>> normalize(Tier.EXCHANGE, [{"ticker": "BTCUSDT", "last": "67000", "change_pct": "1.5"}])[0].id
        'bitcoin'
    """
    default_ts = fetched_at or EPOCH
    convert = normalize_exchange_ticker if tier == Tier.EXCHANGE else normalize_market_item

    records = []
    for item in payload or []:
        if not isinstance(item, dict):
            logger.debug(f"Skipping non-object {tier.name} item: {item!r:.80}")
            continue
        record = convert(item, default_ts)
        if record is None:
            logger.debug(f"Skipping unidentifiable {tier.name} item: {item!r:.80}")
            continue
        records.append(record)
    return records


def normalize_global(payload: Any, fetched_at: Optional[datetime] = None) -> GlobalMarketSnapshot:
    """
    Normalize a CoinGecko /global response (with or without the "data" envelope).

    Example:
        >>> normalize_global({"data": {"total_market_cap": {"usd": 2.1e12}}}).total_market_cap_usd
        2100000000000.0
    """
    data = payload.get("data", payload) if isinstance(payload, dict) else {}
    if not isinstance(data, dict):
        data = {}

    def usd(key: str) -> float:
        value = data.get(key)
        if isinstance(value, dict):
            value = value.get("usd")
        return max(_to_float(value), 0.0)

    dominance_raw = data.get("market_cap_percentage")
    dominance = {}
    if isinstance(dominance_raw, dict):
        dominance = {str(k).lower(): _to_float(v) for k, v in dominance_raw.items()}

    return GlobalMarketSnapshot(
        total_market_cap_usd=usd("total_market_cap"),
        total_volume_usd=usd("total_volume"),
        market_cap_change_24h_pct=_to_float(data.get("market_cap_change_percentage_24h_usd")),
        dominance=dominance,
        active_cryptocurrencies=max(_to_int(data.get("active_cryptocurrencies")), 0),
        markets=max(_to_int(data.get("markets")), 0),
        last_updated=parse_timestamp(data.get("updated_at"), default=fetched_at or EPOCH),
    )
