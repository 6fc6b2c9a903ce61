"""
Unit Tests for the HTTP / WebSocket API

The app is built around in-memory providers, so no network is used.

Run with:
    pytest tests/unit/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.main import create_app
from core.errors import HttpError
from core.provider_manager import ProviderManager
from core.rate_limited_client import RateLimiter
from core.schemas import Tier
from providers.coingecko import CoinGeckoAPIClient, CoinGeckoProvider
from providers.exchanges import ExchangeAggregatorProvider
from providers.static import StaticProvider
from services.event_bus import TOPIC_SNAPSHOTS, TOPIC_STATUS, EventBus
from tests.unit.fakes import FakeLink, make_ticker_item

ASSETS = ["bitcoin", "ethereum", "cardano", "solana"]


@pytest.fixture
def client():
    """App serving the static tier only"""
    app = create_app(ProviderManager({Tier.STATIC: StaticProvider()}), EventBus(), ASSETS)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def exchange_client():
    """App with an exchange tier backed by two in-memory links"""
    okx = FakeLink("okx", [
        make_ticker_item("BTCUSDT", 67010.0, quote_volume=5e9),
        make_ticker_item("ETHUSDT", 3801.0, quote_volume=1e9),
        make_ticker_item("SOLUSDT", 150.0, change_pct=-12.5),
    ])
    gateio = FakeLink("gateio", [
        make_ticker_item("BTCUSDT", 66990.0, quote_volume=1e9),
    ])
    manager = ProviderManager({
        Tier.EXCHANGE: ExchangeAggregatorProvider(links=[okx, gateio]),
        Tier.STATIC: StaticProvider(),
    })
    with TestClient(create_app(manager, EventBus(), ASSETS)) as client:
        yield client


@pytest.fixture
def rest_client(monkeypatch):
    """App with a REST tier that only answers /simple/price"""
    coingecko = CoinGeckoAPIClient(base_url="http://coingecko.test", limiter=RateLimiter(0.0))

    async def mock_get(path, params=None):
        if path == "/simple/price":
            return {
                asset_id: {"usd": 1.0, "usd_24h_change": 0.5}
                for asset_id in params["ids"].split(",")
            }
        raise HttpError(503, provider="coingecko")

    monkeypatch.setattr(coingecko, "_get", mock_get)
    manager = ProviderManager({
        Tier.REST: CoinGeckoProvider(client=coingecko, probe_before_fetch=False),
        Tier.STATIC: StaticProvider(),
    })
    with TestClient(create_app(manager, EventBus(), ASSETS)) as client:
        yield client


# ============================================
# System Endpoints
# ============================================

class TestSystemEndpoints:
    """Tests for / and /health"""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["providers"] == ["static"]

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["active_tier"] == "static"
        assert data["providers"] == {"static": True}


# ============================================
# Market Endpoints
# ============================================

class TestMarketEndpoints:
    """Tests for the /market routes"""

    def test_snapshots(self, client):
        data = client.get("/market/snapshots").json()

        assert data["active_tier"] == Tier.STATIC.value
        assert [record["id"] for record in data["records"]] == ASSETS
        assert data["error"] is None
        assert data["connection_summary"]["static"]["state"] == "connected"

    def test_status(self, client):
        data = client.get("/market/status").json()

        assert data["active_tier"] == "static"
        assert data["asset_ids"] == ASSETS
        assert data["connections"]["static"]["state"] == "connected"

    def test_global(self, client):
        response = client.get("/market/global")

        assert response.status_code == 200
        assert response.json()["data"]["total_market_cap_usd"] == 2.1e12

    def test_retry(self, client):
        data = client.post("/market/retry").json()
        assert data == {"status": "retrying", "cycles": 2}

    def test_set_assets(self, client):
        response = client.put("/market/assets", json={"ids": ["Ethereum", "xrp"]})

        assert response.status_code == 200
        assert response.json() == {"asset_ids": ["ethereum", "ripple"], "records": 2}
        records = client.get("/market/snapshots").json()["records"]
        assert [record["id"] for record in records] == ["ethereum", "ripple"]

    @pytest.mark.parametrize("ids", [[], ["", "  "]])
    def test_set_assets_requires_an_id(self, client, ids):
        assert client.put("/market/assets", json={"ids": ids}).status_code == 400

    def test_best_price_without_exchange_tier(self, client):
        assert client.get("/market/best-price/BTC").status_code == 503

    def test_overview_without_exchange_tier(self, client):
        assert client.get("/market/overview").status_code == 503

    def test_prices_without_rest_tier(self, client):
        assert client.get("/market/prices?ids=bitcoin").status_code == 503

    def test_prices(self, rest_client):
        response = rest_client.get("/market/prices?ids=Bitcoin,xrp,bitcoin")

        assert response.status_code == 200
        assert set(response.json()["prices"]) == {"bitcoin", "ripple"}

    def test_prices_requires_an_id(self, rest_client):
        assert rest_client.get("/market/prices?ids=,").status_code == 400


# ============================================
# Exchange Endpoints
# ============================================

class TestExchangeEndpoints:
    """Tests for the cross-exchange routes"""

    def test_best_price(self, exchange_client):
        data = exchange_client.get("/market/best-price/btc").json()

        assert data["symbol"] == "BTCUSDT"
        assert data["best_bid"]["exchange"] == "okx"
        assert data["best_ask"]["exchange"] == "gateio"
        assert data["price_spread"] == pytest.approx(20.0)
        assert data["exchanges"] == 2

    def test_best_price_unknown_symbol(self, exchange_client):
        assert exchange_client.get("/market/best-price/NOPE").status_code == 404

    def test_exchange_data(self, exchange_client):
        data = exchange_client.get("/market/exchanges/okx").json()

        assert data["status"]["state"] == "connected"
        assert {ticker["ticker"] for ticker in data["tickers"]} == {"BTCUSDT", "ETHUSDT", "SOLUSDT"}

    def test_unknown_exchange(self, exchange_client):
        assert exchange_client.get("/market/exchanges/kraken").status_code == 404

    def test_overview(self, exchange_client):
        data = exchange_client.get("/market/overview?limit=2").json()

        summary = data["summary"]
        assert summary["total_symbols"] == 3
        assert summary["total_volume"] == pytest.approx(5e9 + 1e9 + 1e6)
        assert summary["exchanges"] == 2
        assert summary["active_connections"] == 2
        assert summary["links"] == {"okx": "connected", "gateio": "connected"}
        assert [ticker["ticker"] for ticker in data["top_volume"]] == ["BTCUSDT", "ETHUSDT"]
        assert [ticker["ticker"] for ticker in data["high_volatility"]] == ["SOLUSDT"]

    def test_overview_threshold(self, exchange_client):
        data = exchange_client.get("/market/overview?threshold=20").json()
        assert data["high_volatility"] == []


# ============================================
# WebSocket
# ============================================

class TestMarketWebSocket:
    """Tests for /ws/market"""

    def test_initial_state_then_events(self, client):
        with client.websocket_connect("/ws/market?topics=snapshots") as websocket:
            initial = websocket.receive_json()
            assert initial["type"] == "snapshots"
            assert initial["tier"] == "static"
            assert len(initial["records"]) == 4

            client.post("/market/retry")
            event = websocket.receive_json()
            assert event["type"] == "snapshots"
            assert [record["id"] for record in event["records"]] == ASSETS

    def test_invalid_topics_rejected(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/market?topics=nope") as websocket:
                websocket.receive_json()

    def test_disconnect_releases_subscriptions(self, client):
        event_bus = client.app.state.bus
        with client.websocket_connect("/ws/market?topics=snapshots,status") as websocket:
            websocket.receive_json()
            assert event_bus.subscriber_count(TOPIC_SNAPSHOTS) == 1

        client.post("/market/retry")
        assert event_bus.subscriber_count(TOPIC_SNAPSHOTS) == 0
        assert event_bus.subscriber_count(TOPIC_STATUS) == 0
