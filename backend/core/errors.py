"""Failure taxonomy shared by the geocoding and weather fetchers."""
from __future__ import annotations

from typing import Optional


NOT_FOUND = "not_found"
UPSTREAM_FAILURE = "upstream_failure"
CONFIGURATION_MISSING = "configuration_missing"
RATE_LIMITED = "rate_limited"
QUOTA_EXCEEDED = "quota_exceeded"
NOT_CONFIGURED = "not_configured"


class ForecastError(RuntimeError):
    """Base error for everything a fetcher reports to its caller.

    ``reason`` is one of the module level constants so callers can map the
    failure to a response without parsing the message.
    """

    def __init__(
        self,
        message: str,
        *,
        reason: str,
        provider: Optional[str] = None,
        retry_after: Optional[int] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.provider = provider
        self.retry_after = retry_after
        self.status_code = status_code


class GeocodingError(ForecastError):
    """Raised when an address cannot be resolved to a location."""


class WeatherError(ForecastError):
    """Raised when weather conditions cannot be fetched for a location."""


__all__ = [
    "ForecastError",
    "GeocodingError",
    "WeatherError",
    "NOT_FOUND",
    "UPSTREAM_FAILURE",
    "CONFIGURATION_MISSING",
    "RATE_LIMITED",
    "QUOTA_EXCEEDED",
    "NOT_CONFIGURED",
]
