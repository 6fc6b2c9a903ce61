"""
Test Suite

Structure:
- tests/unit/: Component tests (rate limiter, adapters, tier selection,
  normalization, polling, market feed, API); no network access
- tests/unit/fakes.py: In-memory links and providers shared by the tests

Uses pytest with pytest-asyncio for testing async functionality.
"""
