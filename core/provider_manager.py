"""
Provider Manager — Central Registry for Tier Adapters

This module provides a centralized manager for the provider adapters behind
each data tier. The ProviderManager acts as a registry and factory.

Design Benefits:
    - Single source of truth for which adapter serves which tier
    - Centralized lifecycle management (initialize/shutdown)
    - One shared REST RateLimiter for everything talking to the REST upstream
    - Tests can register fake adapters per tier

Example Usage:
    manager = ProviderManager()
    await manager.initialize_all()

    rest = manager.get_provider(Tier.REST)
    result = await rest.fetch_snapshots(["bitcoin"])

    await manager.shutdown_all()
"""

from typing import Dict, List, Optional, Union

from core.logging import logger
from core.provider_interface import ProviderAdapter
from core.schemas import ConnectionStatus, Tier


class ProviderManager:
    """
    Central Manager for Provider Adapters

    Attributes:
        providers: Dictionary mapping Tier to adapter instance
                   Example: {Tier.EXCHANGE: ExchangeAggregatorProvider(), Tier.REST: CoinGeckoProvider(), ...}

    Example:
        >>> manager = ProviderManager()
        >>> await manager.initialize_all()
        >>> manager.get_provider("rest")
        <CoinGeckoProvider(name='coingecko', tier=REST)>
        >>> await manager.shutdown_all()
    """

    def __init__(self, providers: Optional[Dict[Tier, ProviderAdapter]] = None):
        """
        Register adapters.

        Args:
            providers: Explicit tier → adapter mapping. When None, the default
                       adapters are built from settings.

        Note:
            Adapters are created but not initialized here.
            Call initialize_all() to open sessions and links.
        """
        if providers is None:
            providers = self._default_providers()

        self.providers: Dict[Tier, ProviderAdapter] = dict(sorted(providers.items()))

        logger.info(
            f"ProviderManager initialized with {len(self.providers)} provider(s): "
            f"{', '.join(f'{t.name}={p.name}' for t, p in self.providers.items())}"
        )

    @staticmethod
    def _default_providers() -> Dict[Tier, ProviderAdapter]:
        # Import here to avoid circular imports
        # Each provider module imports from core, so we can't import at module level
        from core.config import settings
        from core.rate_limited_client import RateLimiter
        from providers.coingecko import CoinGeckoProvider
        from providers.exchanges import ExchangeAggregatorProvider
        from providers.static import StaticProvider

        return {
            Tier.EXCHANGE: ExchangeAggregatorProvider(),
            Tier.REST: CoinGeckoProvider(limiter=RateLimiter(settings.rest_min_spacing)),
            Tier.STATIC: StaticProvider(),
        }

    # ============================================
    # Provider Retrieval Methods
    # ============================================

    def get_provider(self, tier: Union[Tier, str]) -> ProviderAdapter:
        """
        Get the adapter serving a tier.

        Args:
            tier: Tier or its name, case-insensitive (e.g., "rest")

        Raises:
            ValueError: If no adapter is registered for the tier
        """
        if isinstance(tier, str):
            try:
                tier = Tier[tier.upper()]
            except KeyError:
                raise ValueError(f"Unknown tier '{tier}'. Available tiers: {', '.join(t.name.lower() for t in Tier)}") from None

        if tier not in self.providers:
            available = ", ".join(t.name.lower() for t in self.providers)
            logger.error(f"No provider registered for tier {tier.name}. Available: {available}")
            raise ValueError(f"No provider registered for tier {tier.name}. Available tiers: {available}")

        return self.providers[tier]

    def has_provider(self, tier: Tier) -> bool:
        return tier in self.providers

    def list_providers(self) -> List[str]:
        return [provider.name for provider in self.providers.values()]

    def statuses(self) -> Dict[str, ConnectionStatus]:
        """Current ConnectionStatus of every adapter, keyed by adapter name."""
        return {provider.name: provider.status() for provider in self.providers.values()}

    # ============================================
    # Lifecycle Management
    # ============================================

    async def initialize_all(self) -> None:
        """
        Initialize all registered adapters.

        A failing adapter is logged and skipped; the static tier still serves data.
        """
        logger.info("Initializing all providers...")

        for tier, provider in self.providers.items():
            try:
                await provider.initialize()
                logger.info(f"✓ {provider.name} ({tier.name}) initialized successfully")
            except Exception as e:
                logger.error(f"✗ Failed to initialize {provider.name}: {e}")

        logger.info("All providers initialized")

    async def shutdown_all(self) -> None:
        """Shutdown all adapters, continuing past individual failures."""
        logger.info("Shutting down all providers...")

        for provider in self.providers.values():
            try:
                await provider.shutdown()
                logger.info(f"✓ {provider.name} shut down successfully")
            except Exception as e:
                logger.error(f"✗ Error shutting down {provider.name}: {e}")

        logger.info("All providers shut down")

    # ============================================
    # Health Check Methods
    # ============================================

    async def health_check_all(self) -> Dict[str, bool]:
        """
        Check reachability of every adapter.

        Returns:
            Dict[str, bool]: adapter name → healthy
        """
        health_status = {}
        for provider in self.providers.values():
            try:
                health_status[provider.name] = await provider.health_check()
            except Exception as e:
                logger.error(f"Health check failed for {provider.name}: {e}")
                health_status[provider.name] = False
        return health_status

    def __repr__(self) -> str:
        return f"<ProviderManager(providers={self.list_providers()})>"

    def __len__(self) -> int:
        return len(self.providers)
