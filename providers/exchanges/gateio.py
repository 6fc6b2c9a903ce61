"""
Gate.io Spot Tickers Link

API Documentation:
    https://www.gate.io/docs/developers/apiv4/#retrieve-ticker-information

Endpoints Used:
    - GET /api/v4/spot/tickers - All spot tickers
    - GET /api/v4/spot/time    - Probe

Response Format:
    [{"currency_pair": "BTC_USDT", "last": "67234.5", "change_percentage": "-2.31",
      "base_volume": "1234.5", "quote_volume": "83000000"}, ...]
"""

from typing import Any, Dict, List

from core.errors import MalformedPayload
from .base import RestTickerLink, make_ticker


class GateioLink(RestTickerLink):
    """Gate.io spot tickers over REST."""

    name = "gateio"
    tickers_path = "/api/v4/spot/tickers"
    probe_path = "/api/v4/spot/time"

    def parse(self, data: Any) -> List[Dict[str, Any]]:
        if not isinstance(data, list):
            raise MalformedPayload("Expected array from spot tickers", provider=self.name)

        tickers = []
        for item in data:
            if not isinstance(item, dict):
                continue
            # No per-ticker timestamp; the normalizer falls back to fetch time
            ticker = make_ticker(
                self.name,
                item.get("currency_pair"),
                last=item.get("last"),
                change_pct=item.get("change_percentage"),
                volume=item.get("base_volume"),
                quote_volume=item.get("quote_volume"),
            )
            if ticker:
                tickers.append(ticker)
        return tickers
