"""
feedgate/core/errors.py
Error taxonomy shared by the core and the request flows.

Each error carries the HTTP status it maps to and a short category message.
The category message is the only thing a client ever sees; the detail stays
in the logs.
"""

from typing import Optional


class GatewayError(Exception):
    status_code = 500
    category = "Internal Server Error"

    def __init__(self, detail: str = "", status_code: Optional[int] = None):
        super().__init__(detail or self.category)
        self.detail = detail or self.category
        if status_code is not None:
            self.status_code = status_code

    @property
    def public_message(self) -> str:
        return self.category


class ValidationError(GatewayError):
    """Malformed input: missing/invalid URL parameter, empty or non-RSS feed."""

    status_code = 400
    category = "Invalid request"

    @property
    def public_message(self) -> str:
        # Validation messages describe the caller's own input, so they are safe.
        return self.detail


class ParseError(GatewayError):
    """Upstream content could not be parsed into an RSS document."""

    status_code = 502
    category = "Failed to parse upstream feed"


class UpstreamFetchError(GatewayError):
    """Origin returned non-2xx or the request never completed."""

    status_code = 502
    category = "Failed to fetch upstream content"


class ForbiddenURLError(GatewayError):
    status_code = 403
    category = "URL not found in allowed list"


class CacheError(GatewayError):
    """Backing-store failure surfaced by the cache store or allowlist."""

    status_code = 500
    category = "Cache error"


class KVError(Exception):
    """Raised by KV backends. Wrapped into CacheError by the core."""
