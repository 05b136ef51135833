"""JWKS key fetching with an injectable TTL cache."""
from collections.abc import Callable
import logging
import threading
import time
from typing import Any

import httpx

from hzsite.errors import UpstreamProviderUnavailable

logger = logging.getLogger(__name__)


class TTLCache:
    """Small thread-safe key/value cache with a fixed time-to-live."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)


class NullCache:
    """Cache that never stores anything."""

    def get(self, key: str) -> Any | None:
        return None

    def set(self, key: str, value: Any) -> None:
        pass

    def invalidate(self, key: str) -> None:
        pass


class JWKSClient:
    """Fetches JSON Web Key Sets and finds signing keys by ``kid``.

    An unknown ``kid`` forces at most one refetch per URL every
    ``refresh_interval`` seconds, so made-up key ids cannot drive traffic to
    the provider.
    """

    def __init__(
        self,
        cache: TTLCache | NullCache,
        http_client: httpx.Client | None = None,
        timeout: float = 10.0,
        refresh_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.refresh_interval = refresh_interval
        self._http_client = http_client
        self._timeout = timeout
        self._clock = clock
        self._forced_at: dict[str, float] = {}
        self._lock = threading.Lock()

    def get_keys(self, jwks_url: str) -> list[dict]:
        """Return the key set for a URL, from cache when fresh."""
        cached = self.cache.get(jwks_url)
        if cached is not None:
            return cached

        keys = self._fetch(jwks_url)
        self.cache.set(jwks_url, keys)
        return keys

    def get_signing_key(self, jwks_url: str, kid: str) -> dict | None:
        """Find the key with ``kid``; refetch once if the cached set lacks it (key rotation)."""
        key = _find_key(self.get_keys(jwks_url), kid)
        if key is not None or not self._may_force_refresh(jwks_url):
            return key

        self.cache.invalidate(jwks_url)
        return _find_key(self.get_keys(jwks_url), kid)

    def _may_force_refresh(self, jwks_url: str) -> bool:
        now = self._clock()
        with self._lock:
            last = self._forced_at.get(jwks_url)
            if last is not None and now - last < self.refresh_interval:
                return False
            self._forced_at[jwks_url] = now
            return True

    def _fetch(self, jwks_url: str) -> list[dict]:
        logger.info(f"Fetching JWKS from {jwks_url}")
        try:
            if self._http_client is not None:
                response = self._http_client.get(jwks_url, headers={"Accept": "application/json"})
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.get(jwks_url, headers={"Accept": "application/json"})
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"JWKS fetch from {jwks_url} failed: {exc}")
            raise UpstreamProviderUnavailable(f"JWKS fetch failed: {exc}") from exc

        keys = body.get("keys") if isinstance(body, dict) else None
        if not isinstance(keys, list):
            raise UpstreamProviderUnavailable(f"JWKS response from {jwks_url} has no key list")
        return [key for key in keys if isinstance(key, dict)]


def _find_key(keys: list[dict], kid: str) -> dict | None:
    for key in keys:
        if key.get("kid") == kid:
            return key
    return None
