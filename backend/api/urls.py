"""API URL configuration."""
from __future__ import annotations

from django.urls import path

from backend.api.views import ForecastView, QuotaStatusView

urlpatterns = [
    path("forecast", ForecastView.as_view(), name="forecast"),
    path("quota", QuotaStatusView.as_view(), name="quota-status"),
]
