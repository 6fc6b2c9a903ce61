"""
FastAPI Application - Tiered Crypto Market Data API

Serves normalized crypto asset snapshots with automatic tier fallback.

Tiers (highest priority first):
    1. Exchange aggregator (OKX, Gate.io, Binance ticker stream)
    2. REST price provider (CoinGecko)
    3. Bundled static dataset

Usage:
    uvicorn app.main:app --reload --host 0.0.0.0 --port 8000

Docs:
    - Swagger: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

import asyncio
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.config import settings, validate_configuration
from core.logging import logger
from core.provider_manager import ProviderManager
from core.schemas import BestPrice, FeedState, GlobalFeedState, Tier
from services.event_bus import TOPIC_GLOBAL, TOPIC_SNAPSHOTS, TOPIC_STATUS, EventBus, bus
from services.market_feed import GlobalMarketFeed, MarketFeed, clean_asset_ids
from services.polling import PollingScheduler


WS_TOPICS = {
    "snapshots": TOPIC_SNAPSHOTS,
    "status": TOPIC_STATUS,
    "global": TOPIC_GLOBAL,
}


class AssetIdsUpdate(BaseModel):
    """Body of PUT /market/assets."""

    ids: List[str] = Field(..., description="Asset ids to track", examples=[["bitcoin", "ethereum"]])


# ============================================
# Application Factory
# ============================================

def create_app(
    manager: Optional[ProviderManager] = None,
    event_bus: Optional[EventBus] = None,
    asset_ids: Optional[List[str]] = None
) -> FastAPI:
    """
    Build the API around a ProviderManager.

    Args:
        manager: Provider registry (default adapters from settings if None)
        event_bus: Bus for feed events (application singleton if None)
        asset_ids: Initially tracked ids (settings.asset_ids_list if None)
    """
    manager = manager or ProviderManager()
    event_bus = event_bus or bus
    scheduler = PollingScheduler()
    feed = MarketFeed(manager, asset_ids, scheduler=scheduler, event_bus=event_bus)
    global_feed = None
    if manager.has_provider(Tier.REST):
        global_feed = GlobalMarketFeed(manager.get_provider(Tier.REST), scheduler=scheduler, event_bus=event_bus)
    elif manager.has_provider(Tier.STATIC):
        global_feed = GlobalMarketFeed(manager.get_provider(Tier.STATIC), scheduler=scheduler, event_bus=event_bus)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown."""
        # Startup
        logger.info("=== Application Starting ===")
        try:
            validate_configuration()
            await manager.initialize_all()
            await feed.start()
            if global_feed is not None:
                global_feed.start()
            logger.info("=== Started Successfully ===")
        except Exception as e:
            logger.error(f"Startup failed: {e}")
            raise

        yield

        # Shutdown
        logger.info("=== Shutting Down ===")
        await feed.stop()
        if global_feed is not None:
            global_feed.stop()
        await manager.shutdown_all()
        logger.info("=== Shutdown Complete ===")

    app = FastAPI(
        title="VaultScope Market Data API",
        description=(
            "Normalized crypto market snapshots with exchange → REST → static fallback.\n\n"
            "## REST Endpoints\n"
            "- `GET /market/snapshots` - Current records, active tier, connection summary\n"
            "- `GET /market/status` - Active tier and per-provider connection state\n"
            "- `GET /market/global` - Global market totals\n"
            "- `POST /market/retry` - Run an immediate cycle on every tier\n"
            "- `PUT /market/assets` - Replace the tracked asset ids\n"
            "- `GET /market/best-price/{symbol}` - Cross-exchange best bid/ask\n"
            "- `GET /market/overview` - Exchange summary, top volume, high volatility\n"
            "- `GET /market/prices?ids=` - Price-only lookup from the REST provider\n"
            "- `GET /market/exchanges/{name}` - One exchange link's status and tickers\n"
            "- `GET /health` - Health check\n\n"
            "## WebSocket\n"
            "- `ws://{host}/ws/market?topics=snapshots,status,global`\n"
            "  Sends the current state on connect, then every feed event."
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    app.state.manager = manager
    app.state.feed = feed
    app.state.global_feed = global_feed
    app.state.bus = event_bus

    # ============================================
    # System Endpoints
    # ============================================

    @app.get("/", tags=["System"])
    async def root():
        """API information and registered providers."""
        return {
            "name": "VaultScope Market Data API",
            "version": "1.0.0",
            "status": "operational",
            "docs": "/docs",
            "providers": manager.list_providers()
        }

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check - tests reachability of every provider."""
        health = await manager.health_check_all()
        return {
            "status": "healthy" if all(health.values()) else "degraded",
            "active_tier": feed.active_tier.name.lower() if feed.active_tier else None,
            "providers": health
        }

    # ============================================
    # Market Endpoints
    # ============================================

    @app.get("/market/snapshots", response_model=FeedState, tags=["Market"])
    async def get_snapshots():
        """Current consumer-visible records and the tier they came from."""
        return feed.state

    @app.get("/market/status", tags=["Market"])
    async def get_status():
        """Active tier and connection state of every provider."""
        state = feed.state
        return {
            "active_tier": state.active_tier.name.lower() if state.active_tier else None,
            "asset_ids": feed.asset_ids,
            "last_update": state.last_update,
            "error": state.error,
            "connections": {
                name: status.model_dump(mode="json")
                for name, status in state.connection_summary.items()
            }
        }

    @app.get("/market/global", response_model=GlobalFeedState, tags=["Market"])
    async def get_global():
        """Global market totals."""
        if global_feed is None:
            raise HTTPException(status_code=503, detail="No provider serves global market data")
        return global_feed.state

    @app.post("/market/retry", tags=["Market"])
    async def retry():
        """Manual retry: immediate cycle on every tier without moving the schedule."""
        cycles = len(await feed.retry())
        if global_feed is not None and global_feed.retry() is not None:
            cycles += 1
        return {"status": "retrying", "cycles": cycles}

    @app.put("/market/assets", tags=["Market"])
    async def set_assets(update: AssetIdsUpdate):
        """Replace the tracked asset ids and restart polling."""
        if not any(asset_id.strip() for asset_id in update.ids):
            raise HTTPException(status_code=400, detail="At least one asset id is required")
        ids = await feed.set_asset_ids(update.ids)
        return {"asset_ids": ids, "records": len(feed.records)}

    @app.get("/market/best-price/{symbol}", response_model=BestPrice, tags=["Market"])
    async def get_best_price(symbol: str):
        """
        Highest and lowest price for a symbol across connected exchanges.

        Example:
            GET /market/best-price/BTCUSDT
        """
        if not manager.has_provider(Tier.EXCHANGE):
            raise HTTPException(status_code=503, detail="Exchange tier is not configured")
        best = manager.get_provider(Tier.EXCHANGE).get_best_price(symbol)
        if best is None:
            raise HTTPException(status_code=404, detail=f"No connected exchange quotes {symbol.upper()}")
        return best

    @app.get("/market/overview", tags=["Market"])
    async def get_overview(
        limit: int = Query(default=10, ge=1, le=100, description="Number of top-volume symbols"),
        threshold: float = Query(default=10.0, ge=0, description="Absolute 24h change in percent")
    ):
        """
        Summary, most liquid symbols and biggest movers across connected exchanges.

        Example:
            GET /market/overview?limit=5&threshold=8
        """
        if not manager.has_provider(Tier.EXCHANGE):
            raise HTTPException(status_code=503, detail="Exchange tier is not configured")
        exchange = manager.get_provider(Tier.EXCHANGE)
        return {
            "summary": exchange.get_market_summary().model_dump(mode="json"),
            "top_volume": exchange.top_volume(limit),
            "high_volatility": exchange.high_volatility(threshold),
        }

    @app.get("/market/prices", tags=["Market"])
    async def get_prices(ids: str = Query(..., description="Comma-separated asset ids")):
        """
        Price-only lookup from the REST provider.

        Example:
            GET /market/prices?ids=bitcoin,xrp
        """
        if not manager.has_provider(Tier.REST):
            raise HTTPException(status_code=503, detail="REST tier is not configured")
        asset_ids = clean_asset_ids(ids.split(","))
        if not asset_ids:
            raise HTTPException(status_code=400, detail="At least one asset id is required")
        prices = await manager.get_provider(Tier.REST).fetch_prices(asset_ids)
        if not prices:
            raise HTTPException(status_code=502, detail="REST provider returned no prices")
        return {"prices": prices}

    @app.get("/market/exchanges/{name}", tags=["Market"])
    async def get_exchange_data(name: str):
        """Status and current USDT tickers of one exchange link."""
        if not manager.has_provider(Tier.EXCHANGE):
            raise HTTPException(status_code=503, detail="Exchange tier is not configured")
        data = manager.get_provider(Tier.EXCHANGE).get_exchange_data(name)
        if data is None:
            raise HTTPException(status_code=404, detail=f"Unknown exchange '{name}'")
        return {"status": data["status"].model_dump(mode="json"), "tickers": data["tickers"]}

    # ============================================
    # WebSocket Endpoint
    # ============================================

    @app.websocket("/ws/market")
    async def websocket_market(
        websocket: WebSocket,
        topics: str = Query(default="snapshots,status,global", description="Comma-separated topics")
    ):
        """
        Push feed events to the client.

        On connect the current state is sent as a "snapshots" event, then every
        event of the selected topics is forwarded as it is published.

        Example:
            ws://localhost:8000/ws/market?topics=snapshots,status
        """
        selected = [WS_TOPICS[t.strip()] for t in topics.split(",") if t.strip() in WS_TOPICS]
        if not selected:
            await websocket.close(code=1008, reason="No valid topics")
            return

        await websocket.accept()
        logger.info(f"WS connected: market ({', '.join(selected)})")
        queue: asyncio.Queue = asyncio.Queue(maxsize=1000)
        for topic in selected:
            event_bus.subscribe(topic, queue)

        async def forward() -> None:
            while True:
                event = await queue.get()
                await websocket.send_json(event)

        forwarder: Optional[asyncio.Task] = None
        try:
            state = feed.state
            await websocket.send_json({
                "type": "snapshots",
                "tier": state.active_tier.name.lower() if state.active_tier else None,
                "records": [record.model_dump(mode="json") for record in state.records],
                "timestamp": state.last_update.isoformat() if state.last_update else None,
            })
            forwarder = asyncio.create_task(forward())
            # Client messages are ignored; receiving only detects the disconnect
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.info("WS disconnected: market")
                    break
        except WebSocketDisconnect:
            logger.info("WS disconnected: market")
        finally:
            if forwarder is not None:
                forwarder.cancel()
                try:
                    await forwarder
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning(f"WS forwarder ended with error: {e}")
            for topic in selected:
                event_bus.unsubscribe(topic, queue)
            logger.info("WS ended: market")

    # ============================================
    # Error Handlers
    # ============================================

    @app.exception_handler(500)
    async def internal_error_handler(request: Request, exc: Exception):
        """Handle 500 errors."""
        logger.error(f"Internal error: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return app


app = create_app()
