"""Core abstractions for the forecast domain."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol


@dataclass(frozen=True)
class Location:
    """Resolved address.

    ``zip`` falls back to ``"<lat>,<lng>"`` when the geocoder returned no
    postal code, so it can always serve as a cache key component.
    """

    zip: str
    city: Optional[str]
    state: Optional[str]
    lat: float
    lng: float

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Location":
        return cls(
            zip=payload["zip"],
            city=payload.get("city"),
            state=payload.get("state"),
            lat=payload["lat"],
            lng=payload["lng"],
        )


@dataclass(frozen=True)
class CurrentConditions:
    temp: Optional[int]
    condition: Optional[str]
    humidity: Optional[int]


@dataclass(frozen=True)
class DailyForecast:
    date: str
    high: Optional[int]
    low: Optional[int]
    condition: Optional[str]


@dataclass(frozen=True)
class WeatherReport:
    """Normalized weather for one location."""

    current: CurrentConditions
    high: Optional[int]
    low: Optional[int]
    extended: List[DailyForecast] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CacheDetail:
    key: str
    hit: bool
    ttl: Optional[int]


@dataclass(frozen=True)
class ForecastResult:
    data: WeatherReport
    location: Location
    cached: bool
    cache_details: Dict[str, CacheDetail]

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class GeocodingProvider(Protocol):
    """Upstream that turns free-form address text into candidate features."""

    name: str

    def search(self, address: str) -> Dict[str, Any]:
        """Return the raw response payload for ``address``."""
        ...


class ConditionsProvider(Protocol):
    """Upstream serving current conditions and a timestamped forecast list."""

    name: str

    def current(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    def forecast(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        ...
