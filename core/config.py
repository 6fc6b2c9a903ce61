"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- Validates all required settings
- Provides type-safe access to configuration values
- Converts comma-separated strings to lists (asset ids, CORS origins)
- Handles optional settings with sensible defaults

Usage:
    from core.config import settings

    # Access configuration values
    print(settings.coingecko_base_url)
    print(settings.asset_ids_list)  # Returns a list of strings
"""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Application Settings

    This class defines all configuration parameters for the market data service.
    Values are automatically loaded from environment variables or .env file.

    Attributes:
        coingecko_base_url: Base URL of the REST price provider (CoinGecko v3 shape)
        coingecko_api_key: Optional demo API key sent as a header
        okx_base_url: OKX REST base URL (exchange tier)
        gateio_base_url: Gate.io REST base URL (exchange tier)
        binance_ws_url: Binance spot WebSocket base URL (exchange tier)
        asset_ids: Comma-separated asset ids tracked by the feed
        exchange_refresh_interval: Seconds between exchange tier cycles
        rest_refresh_interval: Seconds between REST tier cycles
        static_refresh_interval: Seconds between static tier cycles
        global_refresh_interval: Seconds between global market data refreshes
        rest_timeout: Per-request timeout for the REST provider (seconds)
        rest_min_spacing_ms: Minimum spacing between REST provider requests
        rest_probe_before_fetch: Ping the REST provider before each market fetch
        rate_limit_backoff: Extra delay applied after an HTTP 429 (seconds)
        retry_on_error: Enable bounded auto-retry after a failed cycle
        max_retry_attempts: Extra attempts per failed cycle
        retry_delay: Fixed delay between auto-retry attempts (seconds)
        exchange_ws_enabled: Open the Binance ticker stream
        ws_max_reconnect_attempts: Reconnect attempts before the stream link gives up
        app_host: Host address for FastAPI server
        app_port: Port number for FastAPI server
        log_level: Logging level
    """

    # ============================================
    # REST Provider Configuration
    # ============================================

    coingecko_base_url: str = Field(
        default="https://api.coingecko.com/api/v3",
        description="REST price provider base URL"
    )

    coingecko_api_key: str = Field(
        default="",
        description="CoinGecko demo API key (optional)"
    )

    # ============================================
    # Exchange Tier Configuration
    # ============================================

    okx_base_url: str = Field(
        default="https://www.okx.com",
        description="OKX REST API base URL"
    )

    gateio_base_url: str = Field(
        default="https://api.gateio.ws",
        description="Gate.io REST API base URL"
    )

    binance_ws_url: str = Field(
        default="wss://stream.binance.com:9443/ws",
        description="Binance spot WebSocket base URL"
    )

    exchange_ws_enabled: bool = Field(
        default=True,
        description="Open the Binance all-market ticker stream"
    )

    ws_max_reconnect_attempts: int = Field(
        default=5,
        description="Maximum WebSocket reconnection attempts before the link reports an error"
    )

    # ============================================
    # Tracked Assets
    # ============================================

    asset_ids: str = Field(
        default="bitcoin,ethereum,cardano,solana",
        description="Comma-separated list of asset ids"
    )

    # ============================================
    # Polling Cadence
    # ============================================

    exchange_refresh_interval: float = Field(
        default=30.0,
        description="Exchange tier refresh interval (seconds)"
    )

    rest_refresh_interval: float = Field(
        default=60.0,
        description="REST tier refresh interval (seconds)"
    )

    static_refresh_interval: float = Field(
        default=30.0,
        description="Static tier refresh interval (seconds)"
    )

    global_refresh_interval: float = Field(
        default=300.0,
        description="Global market data refresh interval (seconds)"
    )

    # ============================================
    # Rate Limiting & Retries
    # ============================================

    rest_timeout: float = Field(
        default=10.0,
        description="REST provider request timeout (seconds)"
    )

    rest_min_spacing_ms: int = Field(
        default=1000,
        description="Minimum spacing between consecutive REST provider requests (milliseconds)"
    )

    rest_probe_before_fetch: bool = Field(
        default=True,
        description="Ping the REST provider before fetching market data"
    )

    rate_limit_backoff: float = Field(
        default=60.0,
        description="Delay applied to the REST gate after HTTP 429 when no Retry-After is sent"
    )

    retry_on_error: bool = Field(
        default=True,
        description="Retry a failed cycle immediately a bounded number of times"
    )

    max_retry_attempts: int = Field(
        default=3,
        description="Maximum auto-retry attempts per failed cycle"
    )

    retry_delay: float = Field(
        default=5.0,
        description="Fixed delay between auto-retry attempts (seconds)"
    )

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8000,
        description="FastAPI server port"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    # ============================================
    # Derived Properties
    # ============================================

    @property
    def asset_ids_list(self) -> List[str]:
        """
        Convert comma-separated asset ids to a list.

        Example:
            >>> settings.asset_ids_list
            ['bitcoin', 'ethereum', 'cardano', 'solana']
        """
        return [a.strip().lower() for a in self.asset_ids.split(",") if a.strip()]

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert comma-separated CORS origins string to a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def rest_min_spacing(self) -> float:
        """REST minimum spacing in seconds."""
        return self.rest_min_spacing_ms / 1000.0

    def get_coingecko_headers(self) -> dict:
        """
        Get HTTP headers for REST provider requests.

        Returns:
            Dictionary of headers including the demo API key if configured
        """
        headers = {"Accept": "application/json"}
        if self.coingecko_api_key:
            headers["x-cg-demo-api-key"] = self.coingecko_api_key
        return headers


# ============================================
# Global Settings Instance
# ============================================

settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings = None) -> None:
    """
    Validate critical configuration settings on application startup.

    Args:
        config: Settings to validate (defaults to the global instance)

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    # Import logger here to avoid circular import
    # (logging.py imports config.py, so we can't import at module level)
    from core.logging import logger

    config = config or settings

    if not config.asset_ids_list:
        raise ValueError("ASSET_IDS must contain at least one asset id")

    intervals = {
        "EXCHANGE_REFRESH_INTERVAL": config.exchange_refresh_interval,
        "REST_REFRESH_INTERVAL": config.rest_refresh_interval,
        "STATIC_REFRESH_INTERVAL": config.static_refresh_interval,
        "GLOBAL_REFRESH_INTERVAL": config.global_refresh_interval,
    }
    for name, value in intervals.items():
        if value <= 0:
            raise ValueError(f"{name} must be positive, got {value}")

    if config.rest_timeout <= 0:
        raise ValueError(f"REST_TIMEOUT must be positive, got {config.rest_timeout}")

    if config.rest_min_spacing_ms < 0:
        raise ValueError(f"REST_MIN_SPACING_MS cannot be negative, got {config.rest_min_spacing_ms}")

    if config.max_retry_attempts < 0:
        raise ValueError(f"MAX_RETRY_ATTEMPTS cannot be negative, got {config.max_retry_attempts}")

    if not (1 <= config.app_port <= 65535):
        raise ValueError(f"Invalid port number: {config.app_port}. Must be between 1 and 65535")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    logger.info("Configuration validated successfully")
    logger.info(f"Tracking assets: {', '.join(config.asset_ids_list)}")
    logger.info(f"REST provider: {config.coingecko_base_url} (spacing={config.rest_min_spacing_ms}ms, timeout={config.rest_timeout}s)")
    logger.info(
        f"Refresh intervals: exchange={config.exchange_refresh_interval}s, "
        f"rest={config.rest_refresh_interval}s, static={config.static_refresh_interval}s, "
        f"global={config.global_refresh_interval}s"
    )
    logger.info(f"Log level: {config.log_level.upper()}")
