"""
OKX Spot Tickers Link

API Documentation:
    https://www.okx.com/docs-v5/en/#order-book-trading-market-data-get-tickers

Endpoints Used:
    - GET /api/v5/market/tickers?instType=SPOT - All spot tickers
    - GET /api/v5/public/time                  - Probe

Response Format:
    {"code": "0", "msg": "", "data": [
        {"instId": "BTC-USDT", "last": "67234.5", "open24h": "68800",
         "vol24h": "1234.5", "volCcy24h": "83000000", "ts": "1704110400000"}, ...]}

OKX does not send a percentage change, so it is derived from open24h.
"""

from typing import Any, Dict, List

from core.errors import MalformedPayload
from core.normalizer import _to_float
from .base import RestTickerLink, make_ticker


class OKXLink(RestTickerLink):
    """OKX spot tickers over REST."""

    name = "okx"
    tickers_path = "/api/v5/market/tickers"
    tickers_params = {"instType": "SPOT"}
    probe_path = "/api/v5/public/time"

    def parse(self, data: Any) -> List[Dict[str, Any]]:
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise MalformedPayload("Expected {code, data: [...]} from tickers", provider=self.name)
        if str(data.get("code", "0")) != "0":
            raise MalformedPayload(f"OKX error code {data.get('code')}: {data.get('msg')}", provider=self.name)

        tickers = []
        for item in data["data"]:
            if not isinstance(item, dict):
                continue
            last = _to_float(item.get("last"))
            open_24h = _to_float(item.get("open24h"))
            change = (last - open_24h) / open_24h * 100 if open_24h > 0 else 0.0
            ticker = make_ticker(
                self.name,
                item.get("instId"),
                last=last,
                change_pct=round(change, 4),
                volume=item.get("vol24h"),
                quote_volume=item.get("volCcy24h"),
                timestamp=item.get("ts"),
            )
            if ticker:
                tickers.append(ticker)
        return tickers
