"""Management command to fetch a forecast using the same stack as the API."""
from __future__ import annotations

import json
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from backend.api.views import get_forecast_service
from backend.core.errors import ForecastError


class Command(BaseCommand):
    help = "Resolve an address and print its forecast as JSON"

    def add_arguments(self, parser) -> None:  # noqa: D401
        parser.add_argument("--address", type=str, required=True, help="Street address (US only)")
        parser.add_argument("--bypass-cache", action="store_true", help="Ignore cached geocoding and weather data")

    def handle(self, *args: Any, **options: Any) -> None:  # noqa: D401
        address = (options.get("address") or "").strip()
        if not address:
            raise CommandError("Please enter an address (US Only)")
        try:
            result = get_forecast_service().produce(address, bypass=options.get("bypass_cache", False))
        except ForecastError as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(json.dumps(result.as_dict()))
