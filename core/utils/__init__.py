"""
Core Utilities Package

This package contains utility functions and helpers used throughout the application.

Modules:
    - time: Timestamp conversion and normalization utilities
"""

from core.utils.time import to_utc_datetime, parse_timestamp, current_utc_datetime

__all__ = ["to_utc_datetime", "parse_timestamp", "current_utc_datetime"]
