"""Mapbox forward geocoding provider."""
from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

from backend.core.providers.base import HTTPProvider


class MapboxGeocoder(HTTPProvider):
    """Integration with the Mapbox ``mapbox.places`` endpoint."""

    name = "mapbox"
    label = "Mapbox"
    credential_env = "MAPBOX_API_KEY"
    credential_param = "access_token"
    base_url = "https://api.mapbox.com/geocoding/v5/mapbox.places"

    def __init__(self, base_url: Optional[str] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.base_url = base_url or self.base_url

    def search(self, address: str) -> Dict[str, Any]:
        params = {self.credential_param: self._credential()}
        url = f"{self.base_url}/{quote(address, safe='')}.json"
        return self._get_json(url, f"{self.label} API", params)


__all__ = ["MapboxGeocoder"]
