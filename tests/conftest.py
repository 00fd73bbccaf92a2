from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.core.cache import ClockedMemoryCache
from backend.core.providers.mapbox import MapboxGeocoder
from backend.core.providers.openweathermap import OpenWeatherMapProvider
from backend.core.quota import QuotaConfig, QuotaManager


MAPBOX_URL = "https://mapbox.test/geocoding/v5/mapbox.places"
OWM_URL = "https://owm.test/data/2.5"


class TimeController:
    def __init__(self, now: float) -> None:
        self.now = now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def clock() -> TimeController:
    # 30 seconds into a minute, mid-month
    return TimeController(datetime(2024, 1, 15, 12, 0, 30, tzinfo=timezone.utc).timestamp())


@pytest.fixture()
def cache(clock) -> ClockedMemoryCache:
    return ClockedMemoryCache(time_func=clock)


@pytest.fixture()
def environ() -> dict:
    return {}


@pytest.fixture()
def quota(cache, clock, environ) -> QuotaManager:
    config = QuotaConfig(
        {
            "mapbox": {"requests_per_minute": 600, "requests_per_month": 100_000},
            "openweathermap": {"requests_per_minute": 60, "requests_per_month": 1_000_000},
        }
    )
    return QuotaManager(config, cache, clock=clock, environ=environ)


@pytest.fixture()
def geocoder() -> MapboxGeocoder:
    return MapboxGeocoder(api_key="test-mapbox-key", base_url=MAPBOX_URL)


@pytest.fixture()
def weather_provider() -> OpenWeatherMapProvider:
    return OpenWeatherMapProvider(api_key="test-owm-key", base_url=OWM_URL)
