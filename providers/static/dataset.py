"""
Bundled Static Market Dataset

In-memory market data used by the static fallback tier. Items use the same
shape as CoinGecko /coins/markets so the REST normalization path applies.

Sparklines are fixed (7 points, oldest first) so the tier is fully deterministic.
"""

from typing import Any, Dict, List


DATASET_UPDATED_AT = "2024-06-01T00:00:00Z"


def _sparkline(price: float, drift: List[float]) -> List[float]:
    return [round(price * (1 + d), 8) for d in drift]


_DRIFT_UP = [-0.012, -0.008, -0.009, -0.004, -0.002, 0.001, 0.0]
_DRIFT_DOWN = [0.015, 0.011, 0.012, 0.006, 0.004, 0.002, 0.0]
_DRIFT_FLAT = [0.003, -0.002, 0.004, -0.001, 0.002, -0.001, 0.0]


STATIC_MARKETS: Dict[str, Dict[str, Any]] = {
    "bitcoin": {
        "id": "bitcoin",
        "name": "Bitcoin",
        "symbol": "btc",
        "current_price": 67234.56,
        "price_change_percentage_24h": -2.34,
        "total_volume": 28500000000,
        "market_cap": 1320000000000,
        "image": "https://assets.coingecko.com/coins/images/1/large/bitcoin.png",
        "sparkline_in_7d": {"price": _sparkline(67234.56, _DRIFT_DOWN)},
    },
    "ethereum": {
        "id": "ethereum",
        "name": "Ethereum",
        "symbol": "eth",
        "current_price": 3842.78,
        "price_change_percentage_24h": 1.87,
        "total_volume": 15200000000,
        "market_cap": 462000000000,
        "image": "https://assets.coingecko.com/coins/images/279/large/ethereum.png",
        "sparkline_in_7d": {"price": _sparkline(3842.78, _DRIFT_UP)},
    },
    "cardano": {
        "id": "cardano",
        "name": "Cardano",
        "symbol": "ada",
        "current_price": 0.4523,
        "price_change_percentage_24h": -5.67,
        "total_volume": 890000000,
        "market_cap": 15800000000,
        "image": "https://assets.coingecko.com/coins/images/975/large/cardano.png",
        "sparkline_in_7d": {"price": _sparkline(0.4523, _DRIFT_DOWN)},
    },
    "solana": {
        "id": "solana",
        "name": "Solana",
        "symbol": "sol",
        "current_price": 178.92,
        "price_change_percentage_24h": 8.45,
        "total_volume": 2100000000,
        "market_cap": 82000000000,
        "image": "https://assets.coingecko.com/coins/images/4128/large/solana.png",
        "sparkline_in_7d": {"price": _sparkline(178.92, _DRIFT_UP)},
    },
    "binancecoin": {
        "id": "binancecoin",
        "name": "BNB",
        "symbol": "bnb",
        "current_price": 602.34,
        "price_change_percentage_24h": 0.87,
        "total_volume": 1800000000,
        "market_cap": 89000000000,
        "image": "https://assets.coingecko.com/coins/images/825/large/bnb-icon2_2x.png",
        "sparkline_in_7d": {"price": _sparkline(602.34, _DRIFT_FLAT)},
    },
    "ripple": {
        "id": "ripple",
        "name": "XRP",
        "symbol": "xrp",
        "current_price": 0.6234,
        "price_change_percentage_24h": -1.23,
        "total_volume": 1200000000,
        "market_cap": 35000000000,
        "image": "https://assets.coingecko.com/coins/images/44/large/xrp-symbol-white-128.png",
        "sparkline_in_7d": {"price": _sparkline(0.6234, _DRIFT_FLAT)},
    },
    "dogecoin": {
        "id": "dogecoin",
        "name": "Dogecoin",
        "symbol": "doge",
        "current_price": 0.1567,
        "price_change_percentage_24h": 12.34,
        "total_volume": 800000000,
        "market_cap": 22000000000,
        "image": "https://assets.coingecko.com/coins/images/5/large/dogecoin.png",
        "sparkline_in_7d": {"price": _sparkline(0.1567, _DRIFT_UP)},
    },
    "matic-network": {
        "id": "matic-network",
        "name": "Polygon",
        "symbol": "matic",
        "current_price": 0.8901,
        "price_change_percentage_24h": 3.45,
        "total_volume": 450000000,
        "market_cap": 8700000000,
        "image": "https://assets.coingecko.com/coins/images/4713/large/polygon.png",
        "sparkline_in_7d": {"price": _sparkline(0.8901, _DRIFT_UP)},
    },
}


STATIC_GLOBAL: Dict[str, Any] = {
    "data": {
        "total_market_cap": {"usd": 2100000000000},
        "total_volume": {"usd": 89200000000},
        "market_cap_change_percentage_24h_usd": 2.4,
        "market_cap_percentage": {"btc": 62.9, "eth": 22.0, "sol": 3.9, "bnb": 4.2},
        "active_cryptocurrencies": 10000,
        "markets": 850,
        "updated_at": 1717200000,
    }
}
