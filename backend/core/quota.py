"""Per-provider request accounting over second, minute and month windows.

Usage counters live in a Django cache backend. Each window gets its own key
derived from the current time bucket and carries an expiry equal to the
bucket's natural lifetime, so old windows disappear on their own.
"""
from __future__ import annotations

import calendar
import logging
import os
import time
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional

from django.core.cache.backends.base import BaseCache


logger = logging.getLogger(__name__)

SECOND_TIMEOUT = 2
MINUTE_TIMEOUT = 61
DAY_SECONDS = 24 * 60 * 60


class QuotaError(RuntimeError):
    """Base class for quota manager failures."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderNotConfigured(QuotaError):
    def __init__(self, provider: str) -> None:
        super().__init__(provider, f"Provider {provider} is not configured")


class QuotaExceeded(QuotaError):
    def __init__(self, provider: str) -> None:
        super().__init__(provider, f"Monthly quota exceeded for {provider}")


class RateLimitExceeded(QuotaError):
    def __init__(self, provider: str, retry_after: Optional[int] = None) -> None:
        message = f"Rate limit exceeded for {provider}"
        if retry_after is not None:
            message = f"{message}, retry after {retry_after}s"
        super().__init__(provider, message)
        self.retry_after = retry_after


@dataclass(frozen=True)
class ProviderLimits:
    """Ceilings and retry policy for one provider. ``None`` disables a ceiling."""

    requests_per_second: Optional[int] = None
    requests_per_minute: Optional[int] = None
    requests_per_month: Optional[int] = None
    backoff_base: float = 1.0
    max_retries: int = 3


class QuotaConfig:
    """Provider registry built once at startup and shared by reference."""

    def __init__(self, providers: Optional[Mapping[str, Mapping[str, object]]] = None) -> None:
        self._providers: Dict[str, ProviderLimits] = {}
        for provider, limits in (providers or {}).items():
            self.configure(provider, **limits)

    def configure(self, provider: str, **limits: object) -> ProviderLimits:
        known = {field.name for field in fields(ProviderLimits)}
        unknown = set(limits) - known
        if unknown:
            raise ValueError(f"Unknown limit options for {provider}: {', '.join(sorted(unknown))}")
        config = replace(ProviderLimits(), **limits)
        self._providers[str(provider)] = config
        return config

    def get(self, provider: str) -> ProviderLimits:
        try:
            return self._providers[str(provider)]
        except KeyError:
            raise ProviderNotConfigured(str(provider)) from None

    def providers(self) -> List[str]:
        return list(self._providers)

    def __contains__(self, provider: object) -> bool:
        return str(provider) in self._providers


@dataclass(frozen=True)
class Usage:
    second: int
    minute: int
    month: int


ALLOWED = "allowed"
DENIED_QUOTA = "quota_exceeded"
DENIED_RATE = "rate_limited"
DENIED_UNCONFIGURED = "not_configured"


@dataclass(frozen=True)
class Admission:
    """Outcome of an admission check.

    ``window`` names the ceiling that rejected the request (``month``,
    ``second`` or ``minute``); ``retry_after`` is only set for rate limits.
    """

    provider: str
    outcome: str
    usage: Optional[Usage] = None
    window: Optional[str] = None
    retry_after: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == ALLOWED

    def raise_for_outcome(self) -> None:
        if self.outcome == DENIED_UNCONFIGURED:
            raise ProviderNotConfigured(self.provider)
        if self.outcome == DENIED_QUOTA:
            raise QuotaExceeded(self.provider)
        if self.outcome == DENIED_RATE:
            raise RateLimitExceeded(self.provider, self.retry_after)


@dataclass(frozen=True)
class QuotaStatus:
    provider: str
    requests_this_second: int
    requests_this_minute: int
    requests_this_month: int
    limits: Dict[str, Optional[int]]
    within_limits: bool
    quota_offset: int

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


class QuotaManager:
    """Admission checks and usage tracking for upstream API providers.

    Callers ask :meth:`request` before contacting a provider and call
    :meth:`track` once the upstream call succeeded. Limits are checked
    monthly first, then per second, then per minute.
    """

    def __init__(
        self,
        config: QuotaConfig,
        cache: BaseCache,
        *,
        clock: Callable[[], float] = time.time,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config = config
        self.cache = cache
        self._clock = clock
        self._environ = environ if environ is not None else os.environ

    # Configuration ------------------------------------------------------
    def configure(self, provider: str, **limits: object) -> ProviderLimits:
        return self.config.configure(provider, **limits)

    def configured_providers(self) -> List[str]:
        return self.config.providers()

    # Admission ----------------------------------------------------------
    def check(self, provider: str) -> Admission:
        provider = str(provider)
        if provider not in self.config:
            return Admission(provider=provider, outcome=DENIED_UNCONFIGURED)
        limits = self.config.get(provider)
        now = self._clock()
        usage = self._usage(provider, now)

        if limits.requests_per_month is not None and usage.month >= limits.requests_per_month:
            return Admission(provider, DENIED_QUOTA, usage=usage, window="month")
        if limits.requests_per_second is not None and usage.second >= limits.requests_per_second:
            return Admission(provider, DENIED_RATE, usage=usage, window="second", retry_after=1)
        if limits.requests_per_minute is not None and usage.minute >= limits.requests_per_minute:
            retry_after = 60 - int(now) % 60
            return Admission(provider, DENIED_RATE, usage=usage, window="minute", retry_after=retry_after)
        return Admission(provider, ALLOWED, usage=usage)

    def request(self, provider: str) -> Admission:
        """Raise a :class:`QuotaError` unless a call to ``provider`` may proceed."""
        admission = self.check(provider)
        if not admission.allowed:
            logger.warning(
                "Quota check rejected %s (%s, window=%s, retry_after=%s)",
                admission.provider,
                admission.outcome,
                admission.window,
                admission.retry_after,
            )
        admission.raise_for_outcome()
        return admission

    def within_limits(self, provider: str) -> bool:
        return self.check(provider).allowed

    # Tracking -----------------------------------------------------------
    def track(self, provider: str) -> None:
        provider = str(provider)
        self.config.get(provider)
        now = self._clock()
        self._increment(self._key(provider, "second", now), SECOND_TIMEOUT)
        self._increment(self._key(provider, "minute", now), MINUTE_TIMEOUT)
        self._increment(self._key(provider, "month", now), _days_until_month_end(now) * DAY_SECONDS)

    def reset(self, provider: str) -> None:
        provider = str(provider)
        now = self._clock()
        for period in ("second", "minute", "month"):
            self.cache.delete(self._key(provider, period, now))

    # Reporting ----------------------------------------------------------
    def status(self, provider: str) -> QuotaStatus:
        provider = str(provider)
        limits = self.config.get(provider)
        usage = self._usage(provider, self._clock())
        return QuotaStatus(
            provider=provider,
            requests_this_second=usage.second,
            requests_this_minute=usage.minute,
            requests_this_month=usage.month,
            limits={
                "per_second": limits.requests_per_second,
                "per_minute": limits.requests_per_minute,
                "per_month": limits.requests_per_month,
            },
            within_limits=self.within_limits(provider),
            quota_offset=self.quota_offset(provider),
        )

    def quota_offset(self, provider: str) -> int:
        raw = self._environ.get(f"{str(provider).upper()}_QUOTA_OFFSET")
        if not raw:
            return 0
        try:
            value = int(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-numeric quota offset for %s: %r", provider, raw)
            return 0
        return max(value, 0)

    # Retry policy -------------------------------------------------------
    def backoff_delay(self, provider: str, attempt: int) -> float:
        limits = self.config.get(provider)
        return limits.backoff_base * (2 ** min(attempt, limits.max_retries))

    def can_retry(self, provider: str, attempt: int) -> bool:
        return attempt < self.config.get(provider).max_retries

    # Helpers ------------------------------------------------------------
    def _usage(self, provider: str, now: float) -> Usage:
        return Usage(
            second=self._read(self._key(provider, "second", now)),
            minute=self._read(self._key(provider, "minute", now)),
            month=self._read(self._key(provider, "month", now)) + self.quota_offset(provider),
        )

    def _read(self, key: str) -> int:
        return int(self.cache.get(key) or 0)

    def _increment(self, key: str, timeout: int) -> int:
        # add() only writes when the key is absent, so the expiry is fixed by
        # the first increment in the window.
        self.cache.add(key, 0, timeout)
        try:
            return self.cache.incr(key)
        except ValueError:
            # the key expired between add() and incr()
            if self.cache.add(key, 1, timeout):
                return 1
            return self.cache.incr(key)

    @staticmethod
    def _key(provider: str, period: str, now: float) -> str:
        moment = datetime.fromtimestamp(now, tz=timezone.utc)
        if period == "second":
            suffix = str(int(now))
        elif period == "minute":
            suffix = moment.strftime("%Y%m%d%H%M")
        else:
            suffix = moment.strftime("%Y%m")
        return f"quota_manager:{provider}:{period}:{suffix}"


def _days_until_month_end(now: float) -> int:
    today = datetime.fromtimestamp(now, tz=timezone.utc).date()
    last_day = calendar.monthrange(today.year, today.month)[1]
    return last_day - today.day + 1


__all__ = [
    "Admission",
    "ProviderLimits",
    "ProviderNotConfigured",
    "QuotaConfig",
    "QuotaError",
    "QuotaExceeded",
    "QuotaManager",
    "QuotaStatus",
    "RateLimitExceeded",
    "Usage",
]
