"""Weather conditions for a resolved location, cached per sub-resource."""
from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from django.core.cache.backends.base import BaseCache

from backend.core.abstractions import (
    ConditionsProvider,
    CurrentConditions,
    DailyForecast,
    Location,
    WeatherReport,
)
from backend.core.cache import fetch_or_compute
from backend.core.errors import NOT_CONFIGURED, QUOTA_EXCEEDED, RATE_LIMITED, WeatherError
from backend.core.providers.base import ProviderError
from backend.core.quota import ProviderNotConfigured, QuotaExceeded, QuotaManager, RateLimitExceeded


logger = logging.getLogger(__name__)

ZIP_PATTERN = re.compile(r"\d{5}(-\d{4})?")
FORECAST_DAYS = 5


class WeatherService:
    CURRENT_TTL = 30 * 60
    FORECAST_TTL = 3 * 60 * 60

    def __init__(self, provider: ConditionsProvider, quota: QuotaManager, cache: BaseCache) -> None:
        self.provider = provider
        self.quota = quota
        self.cache = cache

    # Cache keys ---------------------------------------------------------
    def location_cache_key(self, location: Location) -> str:
        if _valid_zip(location.zip):
            return f"weather:zip:{location.zip}"
        return f"weather:coords:{location.lat},{location.lng}"

    def current_cache_key(self, location: Location) -> str:
        return f"{self.location_cache_key(location)}:current"

    def forecast_cache_key(self, location: Location) -> str:
        return f"{self.location_cache_key(location)}:forecast"

    # Public API ---------------------------------------------------------
    def fetch(self, location: Location, bypass: bool = False) -> WeatherReport:
        """Return normalized conditions; any upstream failure aborts the whole fetch."""
        params = _location_params(location)
        label = getattr(self.provider, "label", self.provider.name)
        try:
            current = self._cached(
                self.current_cache_key(location), self.CURRENT_TTL, lambda: self.provider.current(params), bypass
            )
            forecast = self._cached(
                self.forecast_cache_key(location), self.FORECAST_TTL, lambda: self.provider.forecast(params), bypass
            )
        except RateLimitExceeded as exc:
            raise WeatherError(
                f"Rate limit exceeded for {label} API. Please try again in {exc.retry_after} seconds.",
                reason=RATE_LIMITED,
                provider=self.provider.name,
                retry_after=exc.retry_after,
            ) from exc
        except QuotaExceeded as exc:
            raise WeatherError(
                f"Monthly quota exceeded for {label} API. Please contact support.",
                reason=QUOTA_EXCEEDED,
                provider=self.provider.name,
            ) from exc
        except ProviderNotConfigured as exc:
            raise WeatherError(
                f"{label} API is not configured for quota tracking.",
                reason=NOT_CONFIGURED,
                provider=self.provider.name,
            ) from exc
        except ProviderError as exc:
            raise WeatherError(
                str(exc), reason=exc.reason, provider=self.provider.name, status_code=exc.status_code
            ) from exc
        return build_report(current, forecast)

    def _cached(self, key: str, ttl: int, call: Callable[[], Dict[str, Any]], bypass: bool) -> Dict[str, Any]:
        def produce() -> Dict[str, Any]:
            self.quota.request(self.provider.name)
            payload = call()
            self.quota.track(self.provider.name)
            return payload

        payload, hit = fetch_or_compute(self.cache, key, ttl, produce, bypass=bypass)
        logger.debug("Weather cache %s for %s", "hit" if hit else "miss", key)
        return payload


def _valid_zip(value: Any) -> bool:
    return ZIP_PATTERN.fullmatch(str(value or "")) is not None


def _location_params(location: Location) -> Dict[str, Any]:
    if _valid_zip(location.zip):
        return {"zip": f"{location.zip},US"}
    return {"lat": location.lat, "lon": location.lng}


# Normalization ------------------------------------------------------------
def build_report(current: Dict[str, Any], forecast: Dict[str, Any]) -> WeatherReport:
    main = current.get("main") or {}
    return WeatherReport(
        current=CurrentConditions(
            temp=round_half_up(main.get("temp")),
            condition=extract_condition(current),
            humidity=main.get("humidity"),
        ),
        high=round_half_up(main.get("temp_max")),
        low=round_half_up(main.get("temp_min")),
        extended=build_extended_forecast(forecast),
    )


def build_extended_forecast(forecast: Dict[str, Any]) -> List[DailyForecast]:
    days = group_by_day(forecast.get("list") or [])
    result: List[DailyForecast] = []
    for day, entries in list(days.items())[:FORECAST_DAYS]:
        temps = [round_half_up((entry.get("main") or {}).get("temp")) for entry in entries]
        temps = [value for value in temps if value is not None]
        conditions = [extract_condition(entry) for entry in entries]
        result.append(
            DailyForecast(
                date=day.strftime("%a"),
                high=max(temps) if temps else None,
                low=min(temps) if temps else None,
                condition=most_common([value for value in conditions if value]),
            )
        )
    return result


def group_by_day(entries: Iterable[Dict[str, Any]]) -> Dict[date, List[Dict[str, Any]]]:
    grouped: Dict[date, List[Dict[str, Any]]] = {}
    for entry in entries:
        day = datetime.fromisoformat(entry["dt_txt"]).date()
        grouped.setdefault(day, []).append(entry)
    return dict(sorted(grouped.items()))


def extract_condition(payload: Dict[str, Any]) -> Optional[str]:
    weather = payload.get("weather") or []
    if not weather:
        return None
    description = weather[0].get("description")
    if not description:
        return None
    return " ".join(word.capitalize() for word in description.split())


def most_common(values: List[str]) -> Optional[str]:
    # Counter keeps insertion order and max() returns the first maximum,
    # so ties go to the condition seen first.
    if not values:
        return None
    counts = Counter(values)
    return max(counts, key=counts.__getitem__)


def round_half_up(value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


__all__ = [
    "WeatherService",
    "build_extended_forecast",
    "build_report",
    "extract_condition",
    "group_by_day",
    "round_half_up",
]
