"""Cache helpers for the forecast pipeline.

``fetch_or_compute`` is the cache-or-compute primitive used by the fetchers,
``remaining_ttl`` is the best-effort lifetime probe used for diagnostics, and
``ClockedMemoryCache`` is an in-process Django cache backend whose notion of
"now" can be driven by tests.
"""
from __future__ import annotations

import logging
import pickle
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from django.core.cache.backends.base import DEFAULT_TIMEOUT, BaseCache


logger = logging.getLogger(__name__)

_MISSING = object()


class _KeyLocks:
    """Per-key mutexes that are dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, List[Any]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if not entry[1]:
                    self._locks.pop(key, None)


_key_locks = _KeyLocks()


def fetch_or_compute(
    cache: BaseCache,
    key: str,
    ttl: float,
    producer: Callable[[], Any],
    *,
    bypass: bool = False,
) -> Tuple[Any, bool]:
    """Return ``(value, hit)`` for ``key``, calling ``producer`` on a miss.

    At most one producer runs per key at a time; callers that queued behind
    it pick up the freshly stored value instead of calling upstream again.
    ``bypass`` skips the lookup and always recomputes.
    """
    if not bypass:
        value = cache.get(key, _MISSING)
        if value is not _MISSING:
            return value, True

    with _key_locks.hold(key):
        if not bypass:
            value = cache.get(key, _MISSING)
            if value is not _MISSING:
                return value, True
        value = producer()
        cache.set(key, value, ttl)
        return value, False


def remaining_ttl(cache: BaseCache, key: str) -> Optional[int]:
    """Whole seconds until ``key`` expires, or ``None`` when unknown."""
    try:
        probe = getattr(cache, "ttl", None)
        if callable(probe):
            remaining = probe(key)
        else:
            remaining = _locmem_ttl(cache, key)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Could not read TTL for %s: %s", key, exc)
        return None
    if remaining is None:
        return None
    remaining = int(round(remaining))
    return remaining if remaining > 0 else None


def _locmem_ttl(cache: BaseCache, key: str) -> Optional[float]:
    expire_info = getattr(cache, "_expire_info", None)
    if expire_info is None:
        return None
    expires_at = expire_info.get(cache.make_key(key))
    if expires_at is None:
        return None
    return expires_at - time.time()


class ClockedMemoryCache(BaseCache):
    """A small TTL cache with an injectable clock.

    Implements the Django cache operations used by the quota manager and the
    fetchers, plus the ``ttl()`` probe that django-redis offers.
    """

    def __init__(
        self,
        location: str = "",
        params: Optional[Dict[str, Any]] = None,
        time_func: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(params or {})
        self._time_func = time_func
        self._storage: Dict[str, Tuple[Optional[float], bytes]] = {}
        self._lock = threading.Lock()

    def add(self, key, value, timeout=DEFAULT_TIMEOUT, version=None) -> bool:
        key = self.make_and_validate_key(key, version=version)
        with self._lock:
            if self._live(key) is not None:
                return False
            self._store(key, value, timeout)
            return True

    def get(self, key, default=None, version=None):
        key = self.make_and_validate_key(key, version=version)
        with self._lock:
            item = self._live(key)
        if item is None:
            return default
        return pickle.loads(item[1])

    def set(self, key, value, timeout=DEFAULT_TIMEOUT, version=None) -> None:
        key = self.make_and_validate_key(key, version=version)
        with self._lock:
            self._store(key, value, timeout)

    def touch(self, key, timeout=DEFAULT_TIMEOUT, version=None) -> bool:
        key = self.make_and_validate_key(key, version=version)
        with self._lock:
            item = self._live(key)
            if item is None:
                return False
            self._storage[key] = (self._expires_at(timeout), item[1])
            return True

    def incr(self, key, delta=1, version=None):
        validated = self.make_and_validate_key(key, version=version)
        with self._lock:
            item = self._live(validated)
            if item is None:
                raise ValueError(f"Key '{key}' not found")
            value = pickle.loads(item[1]) + delta
            self._storage[validated] = (item[0], pickle.dumps(value, pickle.HIGHEST_PROTOCOL))
        return value

    def delete(self, key, version=None) -> bool:
        key = self.make_and_validate_key(key, version=version)
        with self._lock:
            return self._storage.pop(key, None) is not None

    def has_key(self, key, version=None) -> bool:
        key = self.make_and_validate_key(key, version=version)
        with self._lock:
            return self._live(key) is not None

    def ttl(self, key, version=None) -> Optional[float]:
        key = self.make_and_validate_key(key, version=version)
        with self._lock:
            item = self._live(key)
        if item is None or item[0] is None:
            return None
        return item[0] - self._time_func()

    def clear(self) -> None:
        with self._lock:
            self._storage.clear()

    # Helpers ------------------------------------------------------------
    def _live(self, key: str) -> Optional[Tuple[Optional[float], bytes]]:
        item = self._storage.get(key)
        if item is None:
            return None
        expires_at = item[0]
        if expires_at is not None and expires_at <= self._time_func():
            self._storage.pop(key, None)
            return None
        return item

    def _store(self, key: str, value: Any, timeout) -> None:
        self._storage[key] = (self._expires_at(timeout), pickle.dumps(value, pickle.HIGHEST_PROTOCOL))

    def _expires_at(self, timeout) -> Optional[float]:
        if timeout is DEFAULT_TIMEOUT:
            timeout = self.default_timeout
        if timeout is None:
            return None
        return self._time_func() + timeout


__all__ = ["ClockedMemoryCache", "fetch_or_compute", "remaining_ttl"]
