from __future__ import annotations

import re

import pytest
import requests

from backend.core.abstractions import Location
from backend.core.errors import (
    CONFIGURATION_MISSING,
    NOT_FOUND,
    QUOTA_EXCEEDED,
    RATE_LIMITED,
    UPSTREAM_FAILURE,
    GeocodingError,
)
from backend.core.providers.mapbox import MapboxGeocoder
from backend.core.services.geocoding_service import GeocodingService


MAPBOX_PATTERN = re.compile(r"https://mapbox\.test/geocoding/v5/mapbox\.places/.*\.json")

APPLE_PARK = {
    "features": [
        {
            "text": "Apple Park Way",
            "center": [-122.0096, 37.3346],
            "context": [
                {"id": "postcode.123", "text": "95014"},
                {"id": "place.456", "text": "Cupertino"},
                {"id": "region.789", "text": "California", "short_code": "US-CA"},
            ],
        }
    ]
}


@pytest.fixture()
def service(geocoder, quota, cache) -> GeocodingService:
    return GeocodingService(geocoder, quota, cache)


def test_resolves_address(requests_mock, service, quota):
    requests_mock.get(MAPBOX_PATTERN, json=APPLE_PARK)

    location = service.resolve("1 Apple Park Way, Cupertino, CA")

    assert location == Location(zip="95014", city="Cupertino", state="CA", lat=37.3346, lng=-122.0096)
    assert requests_mock.last_request.qs["access_token"] == ["test-mapbox-key"]
    assert "1%20apple%20park%20way" in requests_mock.last_request.url.lower()
    assert quota.status("mapbox").requests_this_minute == 1


def test_second_resolution_served_from_cache(requests_mock, service, quota):
    requests_mock.get(MAPBOX_PATTERN, json=APPLE_PARK)

    first = service.resolve("1 Apple Park Way, Cupertino, CA")
    second = service.resolve("  1 APPLE PARK WAY, Cupertino, CA ")

    assert first == second
    assert requests_mock.call_count == 1
    assert quota.status("mapbox").requests_this_month == 1


def test_cache_expires_after_seven_days(requests_mock, service, clock):
    requests_mock.get(MAPBOX_PATTERN, json=APPLE_PARK)
    service.resolve("1 Apple Park Way")

    clock.advance(GeocodingService.CACHE_TTL - 1)
    service.resolve("1 Apple Park Way")
    assert requests_mock.call_count == 1

    clock.advance(2)
    service.resolve("1 Apple Park Way")
    assert requests_mock.call_count == 2


def test_bypass_refetches(requests_mock, service):
    requests_mock.get(MAPBOX_PATTERN, json=APPLE_PARK)
    service.resolve("1 Apple Park Way")

    service.resolve("1 Apple Park Way", bypass=True)

    assert requests_mock.call_count == 2


def test_cache_key_is_normalized(service):
    assert service.cache_key("  123 Main St, Cupertino ") == "geocoding:123 main st, cupertino"


def test_missing_postcode_falls_back_to_coordinates(requests_mock, service):
    requests_mock.get(
        MAPBOX_PATTERN,
        json={
            "features": [
                {
                    "text": "Remote Location",
                    "center": [-120.5678, 45.1234],
                    "context": [
                        {"id": "place.456", "text": "Somewhere"},
                        {"id": "region.789", "text": "Oregon", "short_code": "US-OR"},
                    ],
                }
            ]
        },
    )

    location = service.resolve("Remote Location, Somewhere")

    assert location.zip == "45.1234,-120.5678"
    assert (location.city, location.state) == ("Somewhere", "OR")


def test_city_and_region_fallbacks(requests_mock, service):
    requests_mock.get(
        MAPBOX_PATTERN,
        json={
            "features": [
                {
                    "text": "Springfield",
                    "center": [-89.65, 39.78],
                    "context": [{"id": "region.1", "text": "Illinois"}],
                }
            ]
        },
    )

    location = service.resolve("Springfield")

    assert location.city == "Springfield"
    assert location.state == "Illinois"


@pytest.mark.parametrize("payload", [{"features": []}, {}])
def test_no_candidates_is_not_found(requests_mock, service, quota, payload):
    requests_mock.get(MAPBOX_PATTERN, json=payload)

    with pytest.raises(GeocodingError, match="Could not find address: Nowhere 123") as excinfo:
        service.resolve("Nowhere 123")

    assert excinfo.value.reason == NOT_FOUND
    assert quota.status("mapbox").requests_this_month == 0


def test_upstream_error(requests_mock, service, quota):
    requests_mock.get(MAPBOX_PATTERN, status_code=500, text="Internal Server Error", reason="Internal Server Error")

    with pytest.raises(GeocodingError, match="Mapbox API request failed with status 500") as excinfo:
        service.resolve("123 Test Street")

    assert excinfo.value.reason == UPSTREAM_FAILURE
    assert excinfo.value.status_code == 500
    assert quota.status("mapbox").requests_this_month == 0


def test_timeout_is_upstream_failure(requests_mock, service):
    requests_mock.get(MAPBOX_PATTERN, exc=requests.exceptions.ConnectTimeout)

    with pytest.raises(GeocodingError, match="timed out") as excinfo:
        service.resolve("123 Test Street")

    assert excinfo.value.reason == UPSTREAM_FAILURE


def test_missing_api_key(requests_mock, quota, cache):
    service = GeocodingService(MapboxGeocoder(api_key="", base_url="https://mapbox.test"), quota, cache)

    with pytest.raises(GeocodingError, match="MAPBOX_API_KEY environment variable is not set") as excinfo:
        service.resolve("123 Test Street")

    assert excinfo.value.reason == CONFIGURATION_MISSING
    assert requests_mock.call_count == 0


def test_rate_limit_is_translated(requests_mock, service, quota):
    quota.configure("mapbox", requests_per_minute=1)
    quota.track("mapbox")

    with pytest.raises(GeocodingError, match=r"Rate limit exceeded for Mapbox API\. Please try again in 30 seconds\.") as excinfo:
        service.resolve("123 Test Street")

    assert excinfo.value.reason == RATE_LIMITED
    assert excinfo.value.retry_after == 30
    assert requests_mock.call_count == 0


def test_monthly_quota_is_translated(requests_mock, service, quota, environ):
    quota.configure("mapbox", requests_per_minute=600, requests_per_month=100)
    environ["MAPBOX_QUOTA_OFFSET"] = "100"

    with pytest.raises(GeocodingError, match="Monthly quota exceeded for Mapbox API") as excinfo:
        service.resolve("123 Test Street")

    assert excinfo.value.reason == QUOTA_EXCEEDED
    assert excinfo.value.retry_after is None
    assert requests_mock.call_count == 0
