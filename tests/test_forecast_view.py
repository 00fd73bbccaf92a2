from __future__ import annotations

import json
import re

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import Client

from backend.api import views
from backend.api.management.commands import forecast_fetch
from backend.core.services.forecast_service import ForecastService
from backend.core.services.geocoding_service import GeocodingService
from backend.core.services.weather_service import WeatherService


MAPBOX_PATTERN = re.compile(r"https://mapbox\.test/geocoding/v5/mapbox\.places/.*\.json")
CURRENT_URL = "https://owm.test/data/2.5/weather"
FORECAST_URL = "https://owm.test/data/2.5/forecast"

GEOCODE_PAYLOAD = {
    "features": [
        {
            "text": "Apple Park Way",
            "center": [-122.0096, 37.3346],
            "context": [{"id": "postcode.1", "text": "95014"}, {"id": "place.2", "text": "Cupertino"}],
        }
    ]
}


@pytest.fixture()
def service(geocoder, weather_provider, quota, cache, monkeypatch) -> ForecastService:
    forecast = ForecastService(
        GeocodingService(geocoder, quota, cache),
        WeatherService(weather_provider, quota, cache),
        cache,
    )
    for module in (views, forecast_fetch):
        monkeypatch.setattr(module, "get_forecast_service", lambda: forecast)
    monkeypatch.setattr(views, "get_quota_manager", lambda: quota)
    return forecast


@pytest.fixture()
def upstream(requests_mock):
    requests_mock.get(MAPBOX_PATTERN, json=GEOCODE_PAYLOAD)
    requests_mock.get(CURRENT_URL, json={"main": {"temp": 71.2, "humidity": 30}, "weather": [{"description": "haze"}]})
    requests_mock.get(FORECAST_URL, json={"list": []})
    return requests_mock


def test_forecast_endpoint_returns_payload(upstream, service) -> None:
    client = Client()
    response = client.get("/api/forecast", {"address": "1 Apple Park Way"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["location"]["zip"] == "95014"
    assert payload["data"]["current"] == {"temp": 71, "condition": "Haze", "humidity": 30}
    assert payload["cached"] is False
    assert set(payload["cache_details"]) == {"geocoding", "weather_current", "weather_forecast"}
    assert payload["quota_status"]["mapbox"]["requests_this_month"] == 1
    assert payload["quota_status"]["openweathermap"]["requests_this_month"] == 2


def test_forecast_endpoint_honours_bypass(upstream, service) -> None:
    client = Client()
    client.get("/api/forecast", {"address": "1 Apple Park Way"})
    response = client.get("/api/forecast", {"address": "1 Apple Park Way", "bypass_cache": "1"})

    assert response.json()["cached"] is False
    assert upstream.call_count == 6


def test_forecast_endpoint_requires_address(service) -> None:
    response = Client().get("/api/forecast", {"address": "   "})

    assert response.status_code == 400
    assert response.json()["detail"] == "Please enter an address (US Only)"


def test_forecast_endpoint_maps_not_found(requests_mock, service) -> None:
    requests_mock.get(MAPBOX_PATTERN, json={"features": []})

    response = Client().get("/api/forecast", {"address": "nowhere"})

    assert response.status_code == 404
    payload = response.json()
    assert (payload["detail"], payload["reason"]) == ("Could not find address: nowhere", "not_found")
    assert payload["quota_status"]["mapbox"]["requests_this_month"] == 0


def test_forecast_endpoint_sets_retry_after(requests_mock, service, quota) -> None:
    quota.configure("mapbox", requests_per_minute=1)
    quota.track("mapbox")

    response = Client().get("/api/forecast", {"address": "1 Apple Park Way"})

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "30"
    assert response.json()["reason"] == "rate_limited"
    assert response.json()["quota_status"]["mapbox"]["requests_this_minute"] == 1


def test_forecast_endpoint_maps_upstream_failure(requests_mock, service) -> None:
    requests_mock.get(MAPBOX_PATTERN, status_code=503, reason="Service Unavailable")

    response = Client().get("/api/forecast", {"address": "1 Apple Park Way"})

    assert response.status_code == 502
    assert "status 503" in response.json()["detail"]


def test_quota_endpoint_lists_providers(service, quota) -> None:
    quota.track("mapbox")

    response = Client().get("/api/quota")

    assert response.status_code == 200
    payload = response.json()
    assert set(payload) == {"mapbox", "openweathermap"}
    assert payload["mapbox"]["requests_this_minute"] == 1
    assert payload["openweathermap"]["within_limits"] is True


def test_forecast_fetch_command(upstream, service, capsys) -> None:
    call_command("forecast_fetch", "--address", "1 Apple Park Way")

    payload = json.loads(capsys.readouterr().out)
    assert payload["location"]["city"] == "Cupertino"


def test_forecast_fetch_command_reports_errors(requests_mock, service) -> None:
    requests_mock.get(MAPBOX_PATTERN, json={"features": []})

    with pytest.raises(CommandError, match="Could not find address"):
        call_command("forecast_fetch", "--address", "nowhere")


def test_quota_status_command(service, capsys) -> None:
    call_command("quota_status")

    payload = json.loads(capsys.readouterr().out)
    assert payload["mapbox"]["limits"]["per_minute"] == 600
