"""
Provider Error Taxonomy

Expected failures of outbound provider calls. Adapters catch ProviderError at
their boundary and turn it into a ConnectionStatus; anything else is a bug and
propagates.

Hierarchy:
    ProviderError
    ├── NetworkError       - no response (DNS, refused connection, reset)
    ├── RequestTimeout     - deadline exceeded
    ├── HttpError          - 4xx/5xx response
    │   └── RateLimited    - HTTP 429, carries the backoff to apply
    └── MalformedPayload   - response body is not the expected shape

    NoDataAvailable        - every tier failed to produce a record (configuration error)
"""

from typing import Optional


class ProviderError(Exception):
    """Base class for expected provider failures."""

    kind = "provider"

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider

    def __str__(self) -> str:
        if self.provider:
            return f"{self.provider}: {self.message}"
        return self.message


class NetworkError(ProviderError):
    """No response was received."""

    kind = "network"


class RequestTimeout(ProviderError):
    """The request did not complete within the configured timeout."""

    kind = "timeout"


class HttpError(ProviderError):
    """The provider answered with a non-2xx status."""

    kind = "http"

    def __init__(self, status: int, message: str = "", provider: Optional[str] = None):
        super().__init__(message or f"HTTP {status}", provider)
        self.status = status

    @property
    def is_server_error(self) -> bool:
        return self.status >= 500


class RateLimited(HttpError):
    """HTTP 429 Too Many Requests."""

    kind = "rate_limit"

    def __init__(self, retry_after: float, message: str = "", provider: Optional[str] = None):
        super().__init__(429, message or f"HTTP 429 (retry after {retry_after:.0f}s)", provider)
        self.retry_after = retry_after


class MalformedPayload(ProviderError):
    """The response could not be decoded into the expected structure."""

    kind = "malformed"


class NoDataAvailable(Exception):
    """
    Raised when no tier can produce a single record.

    The static tier always succeeds, so this means the bundled dataset does not
    cover the configured asset ids.
    """
