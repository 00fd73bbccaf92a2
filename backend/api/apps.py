from __future__ import annotations

import warnings

from django.apps import AppConfig
from django.core.cache import CacheKeyWarning


class ApiConfig(AppConfig):
    name = "backend.api"
    label = "forecast_api"

    def ready(self) -> None:
        # Geocoding keys carry the raw address text; only memcached rejects
        # spaces in keys.
        warnings.filterwarnings("ignore", category=CacheKeyWarning, module="django.core.cache")
