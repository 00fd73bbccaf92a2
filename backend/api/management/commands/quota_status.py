"""Print usage and ceilings for every configured provider."""
from __future__ import annotations

import json
from typing import Any

from django.core.management.base import BaseCommand

from backend.api.views import quota_snapshot


class Command(BaseCommand):
    help = "Show per-provider request usage against configured limits"

    def handle(self, *args: Any, **options: Any) -> None:
        self.stdout.write(json.dumps(quota_snapshot(), indent=2, sort_keys=True))
