from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import requests
from requests import Response

from backend.core.errors import CONFIGURATION_MISSING, UPSTREAM_FAILURE


class ProviderError(RuntimeError):
    """Base provider error: non-success status, timeout or transport failure."""

    reason = UPSTREAM_FAILURE

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MissingCredentials(ProviderError):
    """Raised when the provider's API key is absent."""

    reason = CONFIGURATION_MISSING


@dataclass
class RequestConfig:
    timeout: float = 5.0


class HTTPProvider:
    """Base class that adds a shared session, timeouts and request logging."""

    name = "http"
    label = "HTTP"
    credential_env = ""
    credential_param = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        request_config: Optional[RequestConfig] = None,
    ) -> None:
        self.api_key = api_key
        self.request_config = request_config or RequestConfig()
        self.session = session or requests.Session()
        self._log = logging.getLogger(self.__class__.__name__)

    def _credential(self) -> str:
        if not self.api_key:
            raise MissingCredentials(f"{self.credential_env} environment variable is not set")
        return self.api_key

    def _handle_response(self, response: Response, what: str) -> Response:
        if not response.ok:
            self._log.error("%s returned %s: %s", what, response.status_code, response.text[:500])
            raise ProviderError(
                f"{what} request failed with status {response.status_code}: {response.reason}",
                status_code=response.status_code,
            )
        return response

    def _get_json(self, url: str, what: str, params: dict) -> Any:
        filtered = {**params, self.credential_param: "[FILTERED]"}
        self._log.info("Request: GET %s params=%s", url, filtered)
        started = time.monotonic()
        try:
            response = self.session.get(url, params=params, timeout=self.request_config.timeout)
        except requests.Timeout as exc:
            self._log.error("Request timed out", exc_info=exc)
            raise ProviderError(f"{what} request timed out") from exc
        except requests.RequestException as exc:
            self._log.error("Request failed", exc_info=exc)
            raise ProviderError(f"{what} request failed: {exc}") from exc
        duration = (time.monotonic() - started) * 1000
        self._log.info("Response: %s in %.1fms", response.status_code, duration)
        self._handle_response(response, what)
        try:
            return response.json()
        except ValueError as exc:
            self._log.error("Failed to decode JSON", exc_info=exc)
            raise ProviderError(f"{what} returned invalid json") from exc


__all__ = ["HTTPProvider", "MissingCredentials", "ProviderError", "RequestConfig"]
