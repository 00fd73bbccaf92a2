"""REST API views for forecasts and provider quota usage."""
from __future__ import annotations

import logging
from functools import lru_cache

from django.conf import settings
from django.core.cache import caches
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from backend.core.errors import (
    CONFIGURATION_MISSING,
    NOT_CONFIGURED,
    NOT_FOUND,
    QUOTA_EXCEEDED,
    RATE_LIMITED,
    ForecastError,
)
from backend.core.providers.base import RequestConfig
from backend.core.providers.mapbox import MapboxGeocoder
from backend.core.providers.openweathermap import OpenWeatherMapProvider
from backend.core.quota import QuotaConfig, QuotaManager
from backend.core.services.forecast_service import ForecastService
from backend.core.services.geocoding_service import GeocodingService
from backend.core.services.weather_service import WeatherService


logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    QUOTA_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    CONFIGURATION_MISSING: status.HTTP_503_SERVICE_UNAVAILABLE,
    NOT_CONFIGURED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@lru_cache(maxsize=1)
def get_quota_manager() -> QuotaManager:
    return QuotaManager(QuotaConfig(settings.QUOTA_PROVIDERS), caches[settings.FORECAST_CACHE_ALIAS])


@lru_cache(maxsize=1)
def get_forecast_service() -> ForecastService:
    cache_backend = caches[settings.FORECAST_CACHE_ALIAS]
    quota = get_quota_manager()
    request_config = RequestConfig(timeout=settings.UPSTREAM_TIMEOUT)
    geocoder = GeocodingService(
        MapboxGeocoder(api_key=settings.MAPBOX_API_KEY, request_config=request_config),
        quota,
        cache_backend,
    )
    weather = WeatherService(
        OpenWeatherMapProvider(api_key=settings.OPENWEATHERMAP_API_KEY, request_config=request_config),
        quota,
        cache_backend,
    )
    return ForecastService(geocoder, weather, cache_backend)


def quota_snapshot() -> dict:
    quota = get_quota_manager()
    return {provider: quota.status(provider).as_dict() for provider in quota.configured_providers()}


def _is_truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


class ForecastView(APIView):
    """Resolve an address and return its current weather and 5 day outlook."""

    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):  # noqa: D401
        """Return the forecast bundle for the ``address`` query parameter."""
        address = (request.query_params.get("address") or "").strip()
        if not address:
            return Response({"detail": "Please enter an address (US Only)"}, status=status.HTTP_400_BAD_REQUEST)
        bypass = _is_truthy(request.query_params.get("bypass_cache"))

        try:
            result = get_forecast_service().produce(address, bypass=bypass)
        except ForecastError as exc:
            logger.warning("Forecast for %r failed (%s): %s", address, exc.reason, exc)
            headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after is not None else None
            code = ERROR_STATUS.get(exc.reason, status.HTTP_502_BAD_GATEWAY)
            body = {"detail": str(exc), "reason": exc.reason, "quota_status": quota_snapshot()}
            return Response(body, status=code, headers=headers)

        payload = result.as_dict()
        payload["quota_status"] = quota_snapshot()
        return Response(payload, status=status.HTTP_200_OK)


class QuotaStatusView(APIView):
    """Usage and ceilings for every configured upstream provider."""

    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):
        return Response(quota_snapshot(), status=status.HTTP_200_OK)
