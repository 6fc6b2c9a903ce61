"""
Provider Adapters Package

One subpackage per data tier:
- exchanges/: Exchange aggregator (OKX, Gate.io, Binance ticker stream)
- coingecko/: Rate-limited REST price provider
- static/: Bundled in-memory dataset, always available

Each adapter implements core.provider_interface.ProviderAdapter.
"""
