"""Address resolution behind a cache entry and the Mapbox quota."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from django.core.cache.backends.base import BaseCache

from backend.core.abstractions import GeocodingProvider, Location
from backend.core.cache import fetch_or_compute
from backend.core.errors import GeocodingError, NOT_CONFIGURED, NOT_FOUND, QUOTA_EXCEEDED, RATE_LIMITED
from backend.core.providers.base import ProviderError
from backend.core.quota import ProviderNotConfigured, QuotaExceeded, QuotaManager, RateLimitExceeded


logger = logging.getLogger(__name__)


class GeocodingService:
    CACHE_TTL = 7 * 24 * 60 * 60
    KEY_PREFIX = "geocoding"

    def __init__(self, provider: GeocodingProvider, quota: QuotaManager, cache: BaseCache) -> None:
        self.provider = provider
        self.quota = quota
        self.cache = cache

    def cache_key(self, address: str) -> str:
        return f"{self.KEY_PREFIX}:{address.strip().lower()}"

    def resolve(self, address: str, bypass: bool = False) -> Location:
        """Return the location for ``address``, calling Mapbox only on a cache miss."""
        label = getattr(self.provider, "label", self.provider.name)
        try:
            payload, hit = fetch_or_compute(
                self.cache,
                self.cache_key(address),
                self.CACHE_TTL,
                lambda: self._lookup(address),
                bypass=bypass,
            )
        except RateLimitExceeded as exc:
            raise GeocodingError(
                f"Rate limit exceeded for {label} API. Please try again in {exc.retry_after} seconds.",
                reason=RATE_LIMITED,
                provider=self.provider.name,
                retry_after=exc.retry_after,
            ) from exc
        except QuotaExceeded as exc:
            raise GeocodingError(
                f"Monthly quota exceeded for {label} API. Please contact support.",
                reason=QUOTA_EXCEEDED,
                provider=self.provider.name,
            ) from exc
        except ProviderNotConfigured as exc:
            raise GeocodingError(
                f"{label} API is not configured for quota tracking.",
                reason=NOT_CONFIGURED,
                provider=self.provider.name,
            ) from exc
        except ProviderError as exc:
            raise GeocodingError(
                str(exc), reason=exc.reason, provider=self.provider.name, status_code=exc.status_code
            ) from exc
        logger.debug("Geocoding %s for %r", "hit" if hit else "miss", address)
        return Location.from_dict(payload)

    def _lookup(self, address: str) -> Dict[str, Any]:
        self.quota.request(self.provider.name)
        response = self.provider.search(address)
        location = parse_features(address, response, self.provider.name)
        self.quota.track(self.provider.name)
        return location.as_dict()


def parse_features(address: str, data: Optional[Dict[str, Any]], provider: Optional[str] = None) -> Location:
    """Build a :class:`Location` from the first candidate feature."""
    features = (data or {}).get("features") or []
    if not features:
        raise GeocodingError(f"Could not find address: {address}", reason=NOT_FOUND, provider=provider)

    feature = features[0]
    context = feature.get("context") or []
    lng, lat = feature["center"][0], feature["center"][1]

    zip_code = _context_value(context, "postcode")
    city = _context_value(context, "place") or feature.get("text")
    state = _context_value(context, "region")

    return Location(
        zip=zip_code or f"{lat},{lng}",
        city=city,
        state=state,
        lat=lat,
        lng=lng,
    )


def _context_value(context: List[Dict[str, Any]], kind: str) -> Optional[str]:
    entry = next((item for item in context if str(item.get("id", "")).startswith(f"{kind}.")), None)
    if entry is None:
        return None
    if kind == "region" and entry.get("short_code"):
        return entry["short_code"].split("-")[-1]
    return entry.get("text")


__all__ = ["GeocodingService", "parse_features"]
