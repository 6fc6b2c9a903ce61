"""
Unified Logging Configuration

This module sets up a centralized logging system for the entire service.
All modules should import and use the logger from this module instead of
using print() statements.

Usage:
    from core.logging import logger

    logger.debug("Detailed debugging information")
    logger.info("General informational messages")
    logger.warning("Warning messages for potentially harmful situations")
    logger.error("Error messages for serious problems")

Log Levels (from most to least verbose):
    DEBUG    - Detailed diagnostic information (e.g., "GET /coins/markets | Params: {...}")
    INFO     - General informational messages (e.g., "Active tier changed: REST -> EXCHANGE")
    WARNING  - Warnings about potential issues (e.g., "Rate limited, backing off 60s")
    ERROR    - Errors that don't crash the app (e.g., "CoinGecko fetch failed")
    CRITICAL - Severe errors (e.g., "Static dataset is empty")

Configuration:
    Log level is controlled by the LOG_LEVEL setting in .env file.
"""

import logging
import sys
from typing import Optional


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the application logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Include timestamp in log messages
        include_module: Include module name in log messages

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Market feed started")
        2024-01-01 12:00:00 [INFO] vaultscope: Market feed started
    """
    if log_format is None:
        format_parts = []

        if include_timestamp:
            format_parts.append("%(asctime)s")

        format_parts.append("[%(levelname)s]")

        if include_module:
            format_parts.append("%(name)s")

        format_parts.append("%(message)s")

        log_format = " ".join(format_parts)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    logger = logging.getLogger("vaultscope")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    return logger


# ============================================
# Initialize Logger with Settings
# ============================================

try:
    from core.config import settings
    log_level = settings.log_level if hasattr(settings, 'log_level') else "INFO"
except ImportError:
    log_level = "INFO"

logger = setup_logging(log_level=log_level)


# ============================================
# Convenience Functions
# ============================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module or component.

    Args:
        name: Name for the logger (typically __name__)

    Returns:
        logging.Logger: Logger instance for the specified name

    Example:
        # In providers/coingecko/api_client.py:
        from core.logging import get_logger
        logger = get_logger(__name__)  # "vaultscope.providers.coingecko.api_client"
    """
    return logging.getLogger(f"vaultscope.{name}")


# ============================================
# Log Helper Functions
# ============================================

def log_api_request(provider: str, endpoint: str, params: dict = None) -> None:
    """
    Log an API request with consistent formatting.

    Example:
        >>> log_api_request("coingecko", "/coins/markets", {"ids": "bitcoin"})
        [DEBUG] API Request: coingecko /coins/markets | Params: {'ids': 'bitcoin'}
    """
    if params:
        logger.debug(f"API Request: {provider} {endpoint} | Params: {params}")
    else:
        logger.debug(f"API Request: {provider} {endpoint}")


def log_api_response(provider: str, endpoint: str, status: int, response_time: float = None) -> None:
    """
    Log an API response with status and timing information.

    Example:
        >>> log_api_response("coingecko", "/coins/markets", 200, 0.342)
        [DEBUG] API Response: coingecko /coins/markets | Status: 200 | Time: 0.342s
    """
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    logger.debug(f"API Response: {provider} {endpoint} | Status: {status}{time_str}")


def log_websocket_event(exchange: str, event: str, stream: str = None, details: str = None) -> None:
    """
    Log a WebSocket event with consistent formatting.

    Example:
        >>> log_websocket_event("binance", "connected", "!ticker@arr")
        [INFO] WebSocket: binance connected | Stream: !ticker@arr
    """
    stream_str = f" | Stream: {stream}" if stream else ""
    details_str = f" | {details}" if details else ""

    level = logging.ERROR if event == "error" else logging.INFO
    logger.log(level, f"WebSocket: {exchange} {event}{stream_str}{details_str}")


def log_tier_change(previous, current, reason: str = None) -> None:
    """
    Log a change of the active data tier.

    Args:
        previous: Previously active Tier (None on first evaluation)
        current: Newly selected Tier
        reason: Optional explanation

    Example:
        >>> log_tier_change(Tier.EXCHANGE, Tier.REST, "exchange has no active connections")
        [WARNING] Active tier changed: EXCHANGE -> REST | exchange has no active connections
    """
    reason_str = f" | {reason}" if reason else ""
    # Falling back to a higher tier number is a degradation
    level = logging.INFO
    if previous is not None and current > previous:
        level = logging.WARNING
    previous_name = previous.name if previous is not None else "NONE"
    logger.log(level, f"Active tier changed: {previous_name} -> {current.name}{reason_str}")


logger.debug("Logging system initialized")
