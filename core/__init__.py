"""
Core Package

Contains the provider-agnostic core logic including:
- ProviderAdapter: Abstract base class defining the contract for every data tier
- ProviderManager: Registry that owns one adapter per tier
- RateLimitedClient: Spaced, time-bounded REST client
- Normalizer / TierSelector: Pure functions turning tier payloads into consumer records
- Schemas: Pydantic models for snapshots, statuses and fetch results

This layer keeps tiers interchangeable, so the feed never knows which upstream is behind a tier.
"""
