"""
Remote JWKS fetching and caching for verifiers.

CachingKeySource keeps the last-known-good KeySet, refreshes it on TTL expiry or
on a kid miss, lets exactly one caller fetch per cache generation, and falls back
to the stale set (within max_staleness) when the issuer is unreachable.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from token_core.errors import KeyFetchError
from token_core.keyset import KeySet

logger = logging.getLogger(__name__)


class HttpKeySetFetcher:
    """Callable that GETs a JWKS document and parses it into a KeySet."""

    def __init__(self, url: str, client: httpx.Client | None = None, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout
        self._client = client

    def __call__(self) -> KeySet:
        try:
            if self._client is not None:
                response = self._client.get(self.url, timeout=self.timeout)
            else:
                response = httpx.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            return KeySet.from_jwks(response.json())
        except httpx.HTTPError as e:
            raise KeyFetchError(f"JWKS fetch from {self.url} failed: {e}") from e
        except ValueError as e:
            raise KeyFetchError(f"JWKS from {self.url} is not a valid key set: {e}") from e


@dataclass(frozen=True)
class _CacheEntry:
    key_set: KeySet
    fetched_at: float


class CachingKeySource:
    def __init__(
        self,
        fetch: Callable[[], KeySet],
        *,
        ttl: float = 300,
        max_staleness: float = 3600,
        min_refresh_interval: float = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self.ttl = ttl
        self.max_staleness = max_staleness
        self.min_refresh_interval = min_refresh_interval
        self._clock = clock
        self._entry: _CacheEntry | None = None
        # bumped on every fetch attempt, successful or not
        self._generation = 0
        self._last_attempt: float | None = None
        self._refresh_lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def get_key_set(self, *, force_refresh: bool = False) -> KeySet:
        seen_generation = self._generation
        entry = self._entry
        if entry is not None and not force_refresh and self._clock() - entry.fetched_at < self.ttl:
            return entry.key_set
        return self._refresh(seen_generation, force_refresh)

    def invalidate(self) -> None:
        with self._refresh_lock:
            self._entry = None
            self._last_attempt = None
            self._generation += 1

    def _refresh(self, seen_generation: int, forced: bool) -> KeySet:
        with self._refresh_lock:
            now = self._clock()
            if self._generation != seen_generation:
                # another caller fetched while we waited; reuse its outcome
                return self._serve_cached(now, KeyFetchError("refreshed concurrently without result"))
            if self._last_attempt is not None and now - self._last_attempt < self.min_refresh_interval:
                return self._serve_cached(now, KeyFetchError("key set refresh throttled"))
            self._last_attempt = now
            try:
                key_set = self._fetch()
                self._entry = _CacheEntry(key_set=key_set, fetched_at=now)
            except KeyFetchError as e:
                logger.warning("Key set fetch failed: %s", e)
                return self._serve_cached(now, e)
            finally:
                # waiters that saw the previous generation reuse this outcome
                self._generation += 1
            logger.info(
                "Key set refreshed (forced=%s): %d key(s), kids=%s", forced, len(key_set), key_set.kids()
            )
            return key_set

    def _serve_cached(self, now: float, error: KeyFetchError) -> KeySet:
        """Last-known-good set if it is within max_staleness, otherwise raise error."""
        entry = self._entry
        if entry is None:
            raise error
        age = now - entry.fetched_at
        if age > self.max_staleness:
            logger.error("Cached key set is too stale to use (%.0fs old)", age)
            raise error
        if age >= self.ttl:
            logger.warning("Serving stale key set (%.0fs old)", age)
        return entry.key_set
