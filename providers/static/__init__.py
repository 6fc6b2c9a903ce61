"""
Static Fallback Provider

This module implements the ProviderAdapter for the bundled in-memory dataset.

The static tier is the last resort of the tier fallback chain:
- No network access, so it is always available
- Always reports CONNECTED
- Returns CoinGecko-shaped items so the REST normalization path applies
- Also serves bundled global market totals

Unknown asset ids are skipped (and logged). An empty result from this tier
therefore means the configured ids are not covered by the dataset.
"""

import copy
from typing import List

from core.logging import get_logger
from core.normalizer import canonical_asset_id, normalize_global
from core.provider_interface import ProviderAdapter
from core.schemas import ConnectionState, FetchResult, GlobalFetchResult, Tier
from .dataset import DATASET_UPDATED_AT, STATIC_GLOBAL, STATIC_MARKETS

logger = get_logger(__name__)


class StaticProvider(ProviderAdapter):
    """
    Bundled dataset adapter (Tier.STATIC).

    Example:
        >>> provider = StaticProvider()
        >>> result = await provider.fetch_snapshots(["bitcoin", "xrp"])
        >>> [item["id"] for item in result.payload]
        ['bitcoin', 'ripple']
    """

    name = "static"
    tier = Tier.STATIC

    def __init__(self):
        super().__init__()
        self._state = ConnectionState.CONNECTED

    @staticmethod
    def resolve_id(asset_id: str) -> str:
        """Map an accepted alias (e.g., "xrp") to its dataset id."""
        return canonical_asset_id(asset_id)

    @property
    def available_ids(self) -> List[str]:
        return list(STATIC_MARKETS.keys())

    async def fetch_snapshots(self, ids: List[str]) -> FetchResult:
        payload = []
        missing = []
        seen = set()
        for asset_id in ids:
            key = self.resolve_id(asset_id)
            if key in seen:
                continue
            item = STATIC_MARKETS.get(key)
            if item is None:
                missing.append(asset_id)
                continue
            seen.add(key)
            record = copy.deepcopy(item)
            record["last_updated"] = DATASET_UPDATED_AT
            payload.append(record)

        if missing:
            logger.warning(f"Static dataset has no entry for: {', '.join(missing)}")

        self._mark_success()
        return self._result(payload)

    async def fetch_global(self) -> GlobalFetchResult:
        self._mark_success()
        return GlobalFetchResult(status=self.status(), record=normalize_global(STATIC_GLOBAL))

    async def initialize(self) -> None:
        self._state = ConnectionState.CONNECTED

    async def shutdown(self) -> None:
        # Nothing to release; the bundled dataset stays available
        self._state = ConnectionState.CONNECTED


__all__ = ["StaticProvider"]
