"""
Binance All-Market Ticker Stream Link

This module keeps a WebSocket subscription to the Binance spot all-market
24h ticker stream and maintains the latest USDT tickers from it.

It handles:
- WebSocket connection via websockets
- Exponential backoff reconnection, bounded by max_reconnect_attempts
- Giving up with state ERROR once the attempts are exhausted
- Graceful shutdown

WebSocket Documentation:
    https://developers.binance.com/docs/binance-spot-api-docs/web-socket-streams#all-market-tickers-stream

Stream:
    wss://stream.binance.com:9443/ws/!ticker@arr

Message Format (array, only tickers that changed since the last push):
    [{"e": "24hrTicker", "E": 1704110400000, "s": "BTCUSDT", "c": "67234.5",
      "P": "-2.31", "v": "1234.5", "q": "83000000"}, ...]
"""

import asyncio
import json
from typing import Any, Callable, Dict, Optional

import websockets

from core.logging import get_logger, log_websocket_event
from core.schemas import ConnectionState
from .base import ExchangeLink, make_ticker

logger = get_logger(__name__)

STREAM_NAME = "!ticker@arr"


class BinanceTickerLink(ExchangeLink):
    """
    Binance spot ticker stream.

    Attributes:
        url: Full stream URL
        max_reconnect_attempts: Consecutive failed attempts before giving up
        max_reconnect_delay: Cap on the backoff delay (seconds)
        reconnect_attempt: Consecutive failures so far (reset on connect)

    Example:
        >>> link = BinanceTickerLink("wss://stream.binance.com:9443/ws")
        >>> await link.start()
        >>> link.tickers.get("BTCUSDT")
        >>> await link.stop()
    """

    name = "binance"

    def __init__(
        self,
        ws_url: str,
        max_reconnect_attempts: int = 5,
        max_reconnect_delay: float = 30.0,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Any] = asyncio.sleep
    ):
        """
        Args:
            ws_url: Stream base URL (the stream name is appended)
            max_reconnect_attempts: Attempts before reporting ERROR
            max_reconnect_delay: Upper bound of the exponential backoff
            connect: WebSocket connect factory (injectable for tests)
            sleep: Async sleep (injectable for tests)
        """
        super().__init__()
        self.url = f"{ws_url.rstrip('/')}/{STREAM_NAME}"
        self.max_reconnect_attempts = max_reconnect_attempts
        self.max_reconnect_delay = max_reconnect_delay
        self.reconnect_attempt = 0
        self._connect = connect
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self) -> None:
        """Spawn the stream task (idempotent while it is running)."""
        if self._task is not None and not self._task.done():
            return
        self.reconnect_attempt = 0
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.create_task(self._run(), name=f"{self.name}-ticker-stream")

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def reconnect(self) -> None:
        """Restart the stream after it gave up."""
        if self.state == ConnectionState.ERROR:
            logger.info(f"Restarting {self.name} ticker stream")
            await self.start()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ============================================
    # Stream Loop
    # ============================================

    async def _run(self) -> None:
        while True:
            try:
                async with self._connect(self.url) as ws:
                    log_websocket_event(self.name, "connected", STREAM_NAME)
                    self.reconnect_attempt = 0
                    self._set_state(ConnectionState.CONNECTED)
                    async for message in ws:
                        self._handle_message(message)
                # Server closed the stream cleanly
                raise ConnectionError("stream closed by server")

            except asyncio.CancelledError:
                raise

            except Exception as e:
                self.reconnect_attempt += 1
                log_websocket_event(self.name, "error", STREAM_NAME, str(e))

                if self.reconnect_attempt > self.max_reconnect_attempts:
                    logger.error(
                        f"{self.name} ticker stream gave up after "
                        f"{self.max_reconnect_attempts} reconnect attempts: {e}"
                    )
                    self._set_state(ConnectionState.ERROR, str(e))
                    return

                self._set_state(ConnectionState.DEGRADED, str(e))
                wait_time = min(2 ** (self.reconnect_attempt - 1), self.max_reconnect_delay)
                logger.info(
                    f"Reconnecting to {self.name} ticker stream in {wait_time}s "
                    f"(attempt {self.reconnect_attempt}/{self.max_reconnect_attempts})"
                )
                await self._sleep(wait_time)

    def _handle_message(self, message: Any) -> None:
        """Merge one pushed ticker batch into the ticker map."""
        try:
            data = json.loads(message)
        except (TypeError, ValueError):
            logger.warning(f"Received invalid JSON from {self.name} ticker stream")
            return

        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            return

        updated: Dict[str, Dict[str, Any]] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            ticker = make_ticker(
                self.name,
                item.get("s"),
                last=item.get("c"),
                change_pct=item.get("P"),
                volume=item.get("v"),
                quote_volume=item.get("q"),
                timestamp=item.get("E"),
            )
            if ticker:
                updated[ticker["ticker"]] = ticker

        if updated:
            self.tickers.update(updated)
