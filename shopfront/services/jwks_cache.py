from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Optional

import httpx

from shopfront.core.config import (
    JWKS_CACHE_TTL_SECONDS,
    JWKS_FETCH_TIMEOUT_SECONDS,
    JWKS_REFRESH_COOLDOWN_SECONDS,
)

logger = logging.getLogger(__name__)

JwksFetcher = Callable[[str], dict[str, Any]]


class JwksFetchError(Exception):
    pass


@dataclass
class _CachedKeySet:
    keys: dict[str, Any]
    fetched_at: float
    refreshed_at: Optional[float] = None


def fetch_jwks(url: str, *, timeout: float = JWKS_FETCH_TIMEOUT_SECONDS) -> dict[str, Any]:
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
            payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise JwksFetchError(f"Unable to fetch key set from {url}: {exc}") from exc

    if not isinstance(payload, dict) or not isinstance(payload.get("keys"), list):
        raise JwksFetchError(f"Key set at {url} has no 'keys' list")
    return payload


class JwksCache:
    """Key sets per JWKS URL, refreshed after ``ttl_seconds``.

    ``ttl_seconds=0`` keeps an entry for the life of the process. ``refresh``
    forces a refetch (e.g. on an unknown ``kid``) at most once per
    ``refresh_cooldown_seconds`` per URL, so tokens with made-up key ids cannot
    turn into one outbound request each.

    Network fetches run under a per-URL lock; the cache-wide lock only guards
    the dictionaries.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = JWKS_CACHE_TTL_SECONDS,
        refresh_cooldown_seconds: int = JWKS_REFRESH_COOLDOWN_SECONDS,
        fetcher: JwksFetcher | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.refresh_cooldown_seconds = refresh_cooldown_seconds
        self._fetcher = fetcher or fetch_jwks
        self._clock = clock
        self._entries: dict[str, _CachedKeySet] = {}
        self._url_locks: dict[str, Lock] = {}
        self._lock = Lock()

    def _is_fresh(self, entry: _CachedKeySet) -> bool:
        if self.ttl_seconds <= 0:
            return True
        return (self._clock() - entry.fetched_at) < self.ttl_seconds

    def _in_cooldown(self, entry: Optional[_CachedKeySet]) -> bool:
        if entry is None or entry.refreshed_at is None:
            return False
        return (self._clock() - entry.refreshed_at) < self.refresh_cooldown_seconds

    def _entry(self, url: str) -> Optional[_CachedKeySet]:
        with self._lock:
            return self._entries.get(url)

    def _url_lock(self, url: str) -> Lock:
        with self._lock:
            return self._url_locks.setdefault(url, Lock())

    def _fetch(self, url: str, previous: Optional[_CachedKeySet]) -> dict[str, Any]:
        logger.info("Fetching key set url=%s", url)
        keys = self._fetcher(url)
        refreshed_at = previous.refreshed_at if previous is not None else None
        with self._lock:
            self._entries[url] = _CachedKeySet(keys=keys, fetched_at=self._clock(), refreshed_at=refreshed_at)
        return keys

    def get(self, url: str) -> dict[str, Any]:
        entry = self._entry(url)
        if entry is not None and self._is_fresh(entry):
            return entry.keys

        with self._url_lock(url):
            # Another thread may have fetched while we waited.
            entry = self._entry(url)
            if entry is not None and self._is_fresh(entry):
                return entry.keys
            return self._fetch(url, entry)

    def refresh(self, url: str) -> dict[str, Any]:
        """Refetch ``url`` unless it was force-refreshed within the cooldown."""
        with self._url_lock(url):
            entry = self._entry(url)
            if entry is None:
                return self._fetch(url, None)
            if self._in_cooldown(entry):
                logger.debug("Key set refresh skipped, cooling down url=%s", url)
                return entry.keys

            # Failed fetches count toward the cooldown too.
            entry.refreshed_at = self._clock()
            return self._fetch(url, entry)

    def invalidate(self, url: str | None = None) -> None:
        with self._lock:
            if url is None:
                self._entries.clear()
            else:
                self._entries.pop(url, None)

    def __contains__(self, url: str) -> bool:
        with self._lock:
            return url in self._entries


default_jwks_cache = JwksCache()
