"""
Unit Tests for the Payload Normalizer

These tests verify that:
- Exchange tickers and CoinGecko items map to CryptoAssetSnapshot
- Missing or invalid fields are defaulted instead of rejected
- Risk levels follow the |change| thresholds
- Normalization is pure (same input → equal output, input untouched)

Run with:
    pytest tests/unit/test_normalizer.py -v
"""

import copy
from datetime import datetime, timezone

import pytest

from core.normalizer import (
    calculate_risk_level,
    canonical_asset_id,
    normalize,
    normalize_global,
    resolve_ticker,
    ticker_for_id,
)
from core.schemas import RiskLevel, Tier
from core.utils.time import EPOCH
from providers.static.dataset import STATIC_GLOBAL


# ============================================
# Risk Level
# ============================================

class TestRiskLevel:
    """Tests for calculate_risk_level"""

    @pytest.mark.parametrize("change, expected", [
        (11, RiskLevel.HIGH),
        (7, RiskLevel.MEDIUM),
        (2, RiskLevel.LOW),
        (-12, RiskLevel.HIGH),
        (-6, RiskLevel.MEDIUM),
        (10, RiskLevel.MEDIUM),
        (5, RiskLevel.LOW),
        (0, RiskLevel.LOW),
    ])
    def test_thresholds(self, change, expected):
        assert calculate_risk_level(change) == expected

    def test_invalid_change_is_low(self):
        assert calculate_risk_level(float("nan")) == RiskLevel.LOW


# ============================================
# Ticker Resolution
# ============================================

class TestResolveTicker:
    """Tests for resolve_ticker / ticker_for_id / canonical_asset_id"""

    @pytest.mark.parametrize("ticker", ["BTCUSDT", "BTC-USDT", "btc_usdt", "BTC/USDT"])
    def test_known_ticker_formats(self, ticker):
        assert resolve_ticker(ticker) == {"id": "bitcoin", "name": "Bitcoin", "symbol": "BTC"}

    def test_unknown_ticker_strips_quote_suffix(self):
        assert resolve_ticker("PEPEUSDT") == {"id": "pepe", "name": "PEPE", "symbol": "PEPE"}

    def test_fdusd_suffix_stripped_before_usd(self):
        assert resolve_ticker("WIFFDUSD")["symbol"] == "WIF"

    def test_bare_quote_is_not_stripped_to_empty(self):
        assert resolve_ticker("USDT")["id"] == "usdt"

    def test_reverse_lookup(self):
        assert ticker_for_id("ethereum") == "ETHUSDT"
        assert ticker_for_id("not-a-coin") is None

    @pytest.mark.parametrize("asset_id,expected", [
        ("xrp", "ripple"),
        (" Polygon ", "matic-network"),
        ("BNB", "binancecoin"),
        ("Bitcoin", "bitcoin"),
    ])
    def test_canonical_asset_id(self, asset_id, expected):
        assert canonical_asset_id(asset_id) == expected


# ============================================
# Exchange Payloads
# ============================================

class TestNormalizeExchange:
    """Tests for exchange ticker normalization"""

    def test_btcusdt_maps_to_bitcoin(self):
        payload = [{"ticker": "BTCUSDT", "last": 67234.5, "change_pct": -2.3,
                    "volume": 10.0, "quote_volume": 672345.0, "timestamp": 1704110400000}]

        [record] = normalize(Tier.EXCHANGE, payload)

        assert record.id == "bitcoin"
        assert record.symbol == "BTC"
        assert record.name == "Bitcoin"
        assert record.price == 67234.5
        assert record.change_24h == -2.3
        assert record.volume_24h == 672345.0
        assert record.market_cap == 0.0
        assert record.risk_level == RiskLevel.LOW
        assert record.sparkline == []
        assert record.last_updated == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_raw_binance_keys_accepted(self):
        payload = [{"s": "ETHUSDT", "c": "3800.5", "P": "-7.5", "v": "100", "q": "380050", "E": 1704110400000}]

        [record] = normalize(Tier.EXCHANGE, payload)

        assert record.id == "ethereum"
        assert record.price == 3800.5
        assert record.risk_level == RiskLevel.MEDIUM

    def test_quote_volume_derived_from_base_volume(self):
        [record] = normalize(Tier.EXCHANGE, [{"ticker": "SOLUSDT", "last": 100.0, "volume": 5.0}])
        assert record.volume_24h == 500.0

    def test_missing_timestamp_defaults_to_fetched_at(self):
        fetched_at = datetime(2024, 6, 1, tzinfo=timezone.utc)
        [record] = normalize(Tier.EXCHANGE, [{"ticker": "BTCUSDT", "last": 1.0}], fetched_at)
        assert record.last_updated == fetched_at

    def test_missing_timestamp_without_fetched_at_is_epoch(self):
        [record] = normalize(Tier.EXCHANGE, [{"ticker": "BTCUSDT", "last": 1.0}])
        assert record.last_updated == EPOCH

    def test_items_without_ticker_are_skipped(self):
        records = normalize(Tier.EXCHANGE, [{"last": 1.0}, "garbage", {"ticker": "BTCUSDT", "last": 1.0}])
        assert [r.id for r in records] == ["bitcoin"]

    def test_invalid_numbers_default(self):
        [record] = normalize(Tier.EXCHANGE, [{"ticker": "BTCUSDT", "last": "n/a", "change_pct": None}])
        assert record.price == 0.0
        assert record.change_24h == 0.0


# ============================================
# REST / Static Payloads
# ============================================

class TestNormalizeMarketItems:
    """Tests for CoinGecko-shaped item normalization"""

    @pytest.fixture
    def item(self):
        return {
            "id": "bitcoin",
            "symbol": "btc",
            "name": "Bitcoin",
            "image": "https://assets.coingecko.com/coins/images/1/large/bitcoin.png",
            "current_price": 67234.56,
            "market_cap": 1320000000000,
            "total_volume": 28500000000,
            "price_change_percentage_24h": -12.5,
            "last_updated": "2024-01-01T12:00:00.000Z",
            "sparkline_in_7d": {"price": [67000.0, 67100.0, 67234.56]},
        }

    def test_full_item(self, item):
        [record] = normalize(Tier.REST, [item])

        assert record.id == "bitcoin"
        assert record.symbol == "BTC"
        assert record.price == 67234.56
        assert record.market_cap == 1320000000000
        assert record.volume_24h == 28500000000
        assert record.risk_level == RiskLevel.HIGH
        assert record.sparkline == [67000.0, 67100.0, 67234.56]
        assert record.image.endswith("bitcoin.png")
        assert record.last_updated == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_negative_price_clamped(self, item):
        item["current_price"] = -5
        [record] = normalize(Tier.REST, [item])
        assert record.price == 0.0

    def test_non_finite_sparkline_points_dropped(self, item):
        item["sparkline_in_7d"] = {"price": [1.0, None, "nan", float("inf"), 2.0]}
        [record] = normalize(Tier.REST, [item])
        assert record.sparkline == [1.0, 2.0]

    def test_missing_fields_default(self):
        [record] = normalize(Tier.REST, [{"id": "matic-network"}])

        assert record.name == "Matic Network"
        assert record.symbol == "MATIC-NETWORK"
        assert record.price == 0.0
        assert record.sparkline == []
        assert record.image is None
        assert record.last_updated == EPOCH

    def test_items_without_id_skipped(self, item):
        records = normalize(Tier.STATIC, [{"name": "nameless"}, item])
        assert len(records) == 1

    def test_empty_payload(self):
        assert normalize(Tier.REST, []) == []
        assert normalize(Tier.REST, None) == []


# ============================================
# Purity
# ============================================

class TestPurity:
    """normalize() must be deterministic and must not mutate its input"""

    def test_same_input_equal_output(self):
        payload = [
            {"id": "bitcoin", "current_price": 1.0, "sparkline_in_7d": {"price": [1.0]}},
            {"id": "ethereum", "current_price": 2.0},
        ]
        snapshot = copy.deepcopy(payload)

        first = normalize(Tier.REST, payload)
        second = normalize(Tier.REST, payload)

        assert first == second
        assert payload == snapshot

    def test_exchange_normalization_is_idempotent(self):
        payload = [{"ticker": "BTC-USDT", "last": "1.5"}]
        assert normalize(Tier.EXCHANGE, payload) == normalize(Tier.EXCHANGE, payload)


# ============================================
# Global
# ============================================

class TestNormalizeGlobal:
    """Tests for normalize_global"""

    def test_envelope(self):
        record = normalize_global(STATIC_GLOBAL)

        assert record.total_market_cap_usd == 2.1e12
        assert record.total_volume_usd == 89.2e9
        assert record.market_cap_change_24h_pct == 2.4
        assert record.active_cryptocurrencies == 10000
        assert record.markets == 850
        assert record.dominance["btc"] == 62.9

    def test_without_envelope(self):
        record = normalize_global({"total_market_cap": {"usd": 5}})
        assert record.total_market_cap_usd == 5.0

    def test_garbage_defaults(self):
        record = normalize_global("not an object")
        assert record.total_market_cap_usd == 0.0
        assert record.last_updated == EPOCH
