"""OpenWeatherMap current conditions and 5 day / 3 hour forecast."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from backend.core.providers.base import HTTPProvider


class OpenWeatherMapProvider(HTTPProvider):
    name = "openweathermap"
    label = "OpenWeatherMap"
    credential_env = "OPENWEATHERMAP_API_KEY"
    credential_param = "appid"
    base_url = "https://api.openweathermap.org/data/2.5"
    units = "imperial"

    def __init__(self, base_url: Optional[str] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.base_url = base_url or self.base_url

    def current(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        return self._fetch("weather", params)

    def forecast(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        return self._fetch("forecast", params)

    def _fetch(self, endpoint: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        query = {**params, self.credential_param: self._credential(), "units": self.units}
        return self._get_json(f"{self.base_url}/{endpoint}", f"{self.label} {endpoint} API", query)


__all__ = ["OpenWeatherMapProvider"]
