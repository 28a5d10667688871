"""
Error taxonomy for the caching layer and upstream client.
"""
from typing import Any, Optional


class SportsHubError(Exception):
    """Base class for errors raised by sportshub."""


class ConfigurationError(SportsHubError):
    """A required setting (e.g. the API-Football key) is missing."""


class UpstreamError(SportsHubError):
    """
    The API-Football call failed.

    Raised for network failures, non-2xx responses and 200 responses whose
    envelope carries a non-empty ``errors`` field.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors

    @property
    def is_rate_limited(self) -> bool:
        """True when upstream refused the call because of its request quota."""
        if self.status_code == 429:
            return True
        if isinstance(self.errors, dict):
            return any("ratelimit" in str(k).lower() for k in self.errors)
        return "ratelimit" in self.message.lower()


class StoreError(SportsHubError):
    """Persistent cache read/write failure."""
