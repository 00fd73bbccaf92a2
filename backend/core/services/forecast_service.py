"""Address to forecast orchestration with cache diagnostics."""
from __future__ import annotations

import logging

from django.core.cache.backends.base import BaseCache

from backend.core.abstractions import CacheDetail, ForecastResult
from backend.core.cache import remaining_ttl
from backend.core.services.geocoding_service import GeocodingService
from backend.core.services.weather_service import WeatherService


logger = logging.getLogger(__name__)


class ForecastService:
    """Resolve an address, then fetch its weather.

    Each cache key is probed before the corresponding fetch so the reported
    hit flags describe what the fetch found, not what it left behind.
    Fetcher errors propagate unchanged.
    """

    def __init__(self, geocoder: GeocodingService, weather: WeatherService, cache: BaseCache) -> None:
        self.geocoder = geocoder
        self.weather = weather
        self.cache = cache

    def produce(self, address: str, bypass: bool = False) -> ForecastResult:
        geocoding_key = self.geocoder.cache_key(address)
        geocoding_hit = self._probe(geocoding_key, bypass)

        location = self.geocoder.resolve(address, bypass=bypass)

        current_key = self.weather.current_cache_key(location)
        forecast_key = self.weather.forecast_cache_key(location)
        current_hit = self._probe(current_key, bypass)
        forecast_hit = self._probe(forecast_key, bypass)

        data = self.weather.fetch(location, bypass=bypass)

        # The resolution hit is reported but does not count towards "cached".
        cached = current_hit and forecast_hit
        logger.info("Forecast for %r served (cached=%s, geocoding_hit=%s)", address, cached, geocoding_hit)
        return ForecastResult(
            data=data,
            location=location,
            cached=cached,
            cache_details={
                "geocoding": self._detail(geocoding_key, geocoding_hit),
                "weather_current": self._detail(current_key, current_hit),
                "weather_forecast": self._detail(forecast_key, forecast_hit),
            },
        )

    def _probe(self, key: str, bypass: bool) -> bool:
        return not bypass and self.cache.has_key(key)

    def _detail(self, key: str, hit: bool) -> CacheDetail:
        return CacheDetail(key=key, hit=hit, ttl=remaining_ttl(self.cache, key))


__all__ = ["ForecastService"]
