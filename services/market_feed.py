"""
Market Feed

Consumer-facing orchestration of the tiered market data.

MarketFeed:
    - One poll handle per registered tier, each on its own interval
    - Every tier result is stored (last write wins per tier)
    - After each result, and whenever the exchange links change state, the tier
      selector picks the active tier; its payload is normalized and replaces the
      consumer records wholesale
    - The static tier is primed on start() so consumers always have data
    - An error is shown only when even the selected tier produced no record

GlobalMarketFeed:
    - Single REST source on a slower cadence, no tier fallback
    - A failed refresh keeps the previous data and records the error

Events (services.event_bus):
    market.snapshots - {"type": "snapshots", "tier", "records", "timestamp"}
    market.status    - {"type": "status", "tier", "previous_tier", "reason", "connections", "timestamp"}
    market.global    - {"type": "global", "data", "error", "timestamp"}
"""

import asyncio
from typing import Callable, Dict, List, Optional

from core.errors import NoDataAvailable
from core.logging import get_logger, log_tier_change
from core.normalizer import canonical_asset_id, normalize
from core.provider_interface import ProviderAdapter
from core.provider_manager import ProviderManager
from core.schemas import (
    ConnectionState,
    ConnectionStatus,
    CryptoAssetSnapshot,
    FeedState,
    FetchResult,
    GlobalFeedState,
    GlobalFetchResult,
    Tier,
)
from core.tier_selector import explain_selection
from core.utils.time import current_utc_datetime
from services.event_bus import TOPIC_GLOBAL, TOPIC_SNAPSHOTS, TOPIC_STATUS, EventBus, bus
from services.polling import PollHandle, PollingScheduler

logger = get_logger(__name__)


def clean_asset_ids(ids: List[str]) -> List[str]:
    """
    Canonicalize (lowercase, aliases resolved) and de-duplicate asset ids, keeping their order.

    Example:
        >>> clean_asset_ids([" Bitcoin", "ethereum", "bitcoin", "xrp", ""])
        ['bitcoin', 'ethereum', 'ripple']
    """
    seen = []
    for asset_id in ids:
        key = canonical_asset_id(asset_id)
        if key and key not in seen:
            seen.append(key)
    return seen


def _fetch_failed(result: FetchResult) -> bool:
    return result.status.state == ConnectionState.ERROR


class MarketFeed:
    """
    Tiered market snapshot feed.

    Attributes:
        manager: ProviderManager holding one adapter per tier
        asset_ids: Tracked asset ids
        scheduler: PollingScheduler owning the per-tier handles
        intervals: Seconds between cycles, per tier

    Example:
        >>> feed = MarketFeed(ProviderManager(), ["bitcoin", "ethereum"])
        >>> await feed.start()
        >>> feed.state.active_tier
        <Tier.STATIC: 3>
        >>> await feed.stop()
    """

    def __init__(
        self,
        manager: ProviderManager,
        asset_ids: Optional[List[str]] = None,
        scheduler: Optional[PollingScheduler] = None,
        event_bus: Optional[EventBus] = None,
        intervals: Optional[Dict[Tier, float]] = None,
        max_retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        prime_timeout: float = 5.0,
        sleep: Callable = asyncio.sleep
    ):
        from core.config import settings

        self.manager = manager
        self.asset_ids = clean_asset_ids(asset_ids if asset_ids is not None else settings.asset_ids_list)
        self.scheduler = scheduler or PollingScheduler()
        self.bus = event_bus or bus
        self.intervals = {
            Tier.EXCHANGE: settings.exchange_refresh_interval,
            Tier.REST: settings.rest_refresh_interval,
            Tier.STATIC: settings.static_refresh_interval,
            **(intervals or {}),
        }
        if max_retry_attempts is None:
            max_retry_attempts = settings.max_retry_attempts if settings.retry_on_error else 0
        self.max_retry_attempts = max_retry_attempts
        self.retry_delay = settings.retry_delay if retry_delay is None else retry_delay
        self.prime_timeout = prime_timeout
        self._sleep = sleep

        self._results: Dict[Tier, FetchResult] = {}
        self._records: List[CryptoAssetSnapshot] = []
        self._active_tier: Optional[Tier] = None
        self._last_update = None
        self._error: Optional[str] = None
        self._handles: Dict[Tier, PollHandle] = {}
        self._running = False

        exchange = manager.providers.get(Tier.EXCHANGE)
        if exchange is not None and hasattr(exchange, "on_status_change"):
            exchange.on_status_change = self._on_exchange_status

    # ============================================
    # Control
    # ============================================

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start polling every tier and wait for the static tier to prime the records."""
        if self._running:
            return
        self._running = True
        # Results of a previous session are never reused
        self._results = {}
        logger.info(f"Starting market feed for {len(self.asset_ids)} asset(s): {', '.join(self.asset_ids)}")
        self._start_handles()
        await self._prime()

    async def stop(self, cancel_inflight: bool = True) -> None:
        """Stop polling. Results still in flight never reach the records."""
        if not self._running:
            return
        self._running = False
        for handle in self._handles.values():
            handle.stop(cancel_inflight=cancel_inflight)
        logger.info("Market feed stopped")

    async def retry(self) -> List[asyncio.Task]:
        """
        Manual retry: re-open links that gave up, then run an immediate cycle on every tier.

        Returns:
            The spawned cycle tasks
        """
        await asyncio.gather(*(provider.reconnect() for provider in self.manager.providers.values()))
        tasks = [handle.retry() for handle in self._handles.values()]
        return [task for task in tasks if task is not None]

    async def set_asset_ids(self, ids: List[str]) -> List[str]:
        """
        Replace the tracked asset ids.

        All timers are cancelled before polling restarts with the new set, so
        results for the old set never reach the records.

        Returns:
            The cleaned id list now in effect
        """
        cleaned = clean_asset_ids(ids)
        if cleaned == self.asset_ids:
            return self.asset_ids

        logger.info(f"Tracked assets changed: {', '.join(self.asset_ids)} → {', '.join(cleaned)}")
        for handle in self._handles.values():
            handle.stop(cancel_inflight=True)
        self._handles = {}
        self._results = {}
        self.asset_ids = cleaned

        if self._running:
            self._start_handles()
            await self._prime()
        return self.asset_ids

    # ============================================
    # State
    # ============================================

    @property
    def records(self) -> List[CryptoAssetSnapshot]:
        return list(self._records)

    @property
    def active_tier(self) -> Optional[Tier]:
        return self._active_tier

    @property
    def state(self) -> FeedState:
        return FeedState(
            records=list(self._records),
            active_tier=self._active_tier,
            connection_summary=self.manager.statuses(),
            last_update=self._last_update,
            error=self._error,
        )

    def get_result(self, tier: Tier) -> Optional[FetchResult]:
        """Latest stored result of a tier (None before its first cycle)."""
        return self._results.get(tier)

    # ============================================
    # Internals
    # ============================================

    def _start_handles(self) -> None:
        for tier, provider in self.manager.providers.items():
            handle = self.scheduler.schedule(
                f"market.{tier.name.lower()}",
                fetch=self._fetcher(provider),
                on_result=self._make_apply(tier),
                interval=self.intervals[tier],
                max_retry_attempts=0 if tier == Tier.STATIC else self.max_retry_attempts,
                retry_delay=self.retry_delay,
                should_retry=_fetch_failed,
                sleep=self._sleep,
            )
            self._handles[tier] = handle
            handle.start()

    def _fetcher(self, provider: ProviderAdapter):
        async def fetch() -> FetchResult:
            return await provider.fetch_snapshots(list(self.asset_ids))
        return fetch

    def _make_apply(self, tier: Tier):
        def apply(result: FetchResult) -> None:
            self._apply(tier, result)
        return apply

    async def _prime(self) -> None:
        static = self._handles.get(Tier.STATIC)
        if static is None:
            logger.warning("No static provider registered; records stay empty until another tier answers")
            return
        try:
            await asyncio.wait_for(static.first_result.wait(), timeout=self.prime_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Static tier did not answer within {self.prime_timeout}s")

    def _apply(self, tier: Tier, result: FetchResult) -> None:
        if not self._running:
            return
        self._results[tier] = result
        if result.status.state == ConnectionState.ERROR:
            logger.debug(f"{tier.name} cycle failed: {result.status.last_error}")
        self._reevaluate()

    def _on_exchange_status(self, status: ConnectionStatus) -> None:
        if not self._running:
            return
        current = self._results.get(Tier.EXCHANGE)
        if current is None:
            return
        self._results[Tier.EXCHANGE] = current.model_copy(update={"status": status})
        self._reevaluate()

    def _reevaluate(self) -> None:
        tier, reason = explain_selection(self._results.get(Tier.EXCHANGE), self._results.get(Tier.REST))
        selected = self._results.get(tier)
        if selected is None:
            # Static tier not primed yet; keep what consumers already have
            return

        records = normalize(tier, selected.payload, selected.fetched_at)
        previous = self._active_tier
        self._active_tier = tier
        self._records = records
        self._last_update = current_utc_datetime()

        if records:
            self._error = None
        else:
            error = NoDataAvailable(
                f"No market data available for: {', '.join(self.asset_ids) or '(no assets configured)'}"
            )
            self._error = str(error)
            logger.error(f"{error}. Check the configured asset ids")

        if previous != tier:
            if previous is not None:
                log_tier_change(previous, tier, reason)
            else:
                logger.info(f"Active tier: {tier.name} ({reason})")
            self.bus.publish_nowait(TOPIC_STATUS, {
                "type": "status",
                "tier": tier.name.lower(),
                "previous_tier": previous.name.lower() if previous is not None else None,
                "reason": reason,
                "connections": {
                    name: status.model_dump(mode="json")
                    for name, status in self.manager.statuses().items()
                },
                "timestamp": self._last_update.isoformat(),
            })

        self.bus.publish_nowait(TOPIC_SNAPSHOTS, {
            "type": "snapshots",
            "tier": tier.name.lower(),
            "records": [record.model_dump(mode="json") for record in records],
            "timestamp": self._last_update.isoformat(),
        })


class GlobalMarketFeed:
    """
    Global market totals on their own cadence.

    Example:
        >>> feed = GlobalMarketFeed(manager.get_provider(Tier.REST))
        >>> feed.start()
        >>> feed.state.data.total_market_cap_usd
    """

    HANDLE_NAME = "market.global"

    def __init__(
        self,
        provider: ProviderAdapter,
        scheduler: Optional[PollingScheduler] = None,
        event_bus: Optional[EventBus] = None,
        interval: Optional[float] = None,
        max_retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Callable = asyncio.sleep
    ):
        from core.config import settings

        self.provider = provider
        self.scheduler = scheduler or PollingScheduler()
        self.bus = event_bus or bus
        self.interval = interval or settings.global_refresh_interval
        if max_retry_attempts is None:
            max_retry_attempts = settings.max_retry_attempts if settings.retry_on_error else 0
        self.max_retry_attempts = max_retry_attempts
        self.retry_delay = settings.retry_delay if retry_delay is None else retry_delay
        self._sleep = sleep

        self._state = GlobalFeedState()
        self._handle: Optional[PollHandle] = None

    def start(self) -> None:
        if self._handle is not None and self._handle.running:
            return
        self._handle = self.scheduler.schedule(
            self.HANDLE_NAME,
            fetch=self.provider.fetch_global,
            on_result=self._apply,
            interval=self.interval,
            max_retry_attempts=self.max_retry_attempts,
            retry_delay=self.retry_delay,
            should_retry=lambda result: not result.ok,
            sleep=self._sleep,
        )
        self._handle.start()
        logger.info(f"Global market feed started ({self.provider.name}, every {self.interval}s)")

    def stop(self, cancel_inflight: bool = True) -> None:
        if self._handle is not None:
            self._handle.stop(cancel_inflight=cancel_inflight)

    def retry(self) -> Optional[asyncio.Task]:
        if self._handle is None:
            return None
        return self._handle.retry()

    @property
    def handle(self) -> Optional[PollHandle]:
        return self._handle

    @property
    def state(self) -> GlobalFeedState:
        return self._state.model_copy()

    def _apply(self, result: GlobalFetchResult) -> None:
        now = current_utc_datetime()
        if result.record is not None:
            self._state = GlobalFeedState(data=result.record, status=result.status, last_update=now, error=None)
        else:
            # Keep the previous data; only the status and error change
            self._state = self._state.model_copy(update={
                "status": result.status,
                "error": result.status.last_error or "Global market data unavailable",
            })

        self.bus.publish_nowait(TOPIC_GLOBAL, {
            "type": "global",
            "data": self._state.data.model_dump(mode="json") if self._state.data else None,
            "error": self._state.error,
            "timestamp": now.isoformat(),
        })
