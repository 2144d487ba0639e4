"""
Signing-key resolution for bearer tokens issued by the Keycloak realm.
Keys are fetched from the realm's JWKS endpoint and cached per kid for the process lifetime,
with entries refetched once older than JWKS_CACHE_LIFESPAN.
"""
import logging
import threading
import time
from dataclasses import dataclass

import jwt
from jwt import PyJWKClient

from notes_server.config import JWKS_CACHE_LIFESPAN, JWKS_URI

logger = logging.getLogger(__name__)


class KeyResolutionError(Exception):
    """JWKS endpoint unreachable, document malformed, or kid not published."""


@dataclass
class CachedKey:
    key_id: str
    public_key: object
    fetched_at: float


class KeyResolver:
    """
    kid -> public key, backed by PyJWKClient for the HTTP fetch.
    PyJWKClient's own caches are disabled so this object is the only cache; invalidate() forces a refetch.
    An unknown kid makes PyJWKClient refetch the key set once before failing (provider key rotation).
    """

    def __init__(self, jwks_uri: str, lifespan: int = JWKS_CACHE_LIFESPAN):
        self.jwks_uri = jwks_uri
        self.lifespan = lifespan
        self._client = PyJWKClient(uri=jwks_uri, cache_keys=False, cache_jwk_set=False)
        self._cache: dict[str, CachedKey] = {}
        self._lock = threading.Lock()

    def _cached(self, key_id: str) -> CachedKey | None:
        with self._lock:
            entry = self._cache.get(key_id)
        if entry is None:
            return None
        if self.lifespan > 0 and time.monotonic() - entry.fetched_at >= self.lifespan:
            return None
        return entry

    def resolve(self, key_id: str):
        """Return the public key for key_id. Raises KeyResolutionError."""
        entry = self._cached(key_id)
        if entry is not None:
            return entry.public_key
        try:
            signing_key = self._client.get_signing_key(key_id)
        except (jwt.PyJWTError, ValueError) as e:
            # PyJWKClientError / PyJWKSetError are PyJWTError; a non-JSON body surfaces as ValueError
            logger.warning("Signing key %s could not be resolved from %s: %s", key_id, self.jwks_uri, e)
            raise KeyResolutionError(f"Unable to resolve signing key {key_id!r}") from e
        entry = CachedKey(key_id=key_id, public_key=signing_key.key, fetched_at=time.monotonic())
        with self._lock:
            self._cache[key_id] = entry
        logger.info("Cached signing key kid=%s", key_id)
        return entry.public_key

    def invalidate(self, key_id: str | None = None) -> None:
        """Drop one cached key, or all of them when key_id is None."""
        with self._lock:
            if key_id is None:
                self._cache.clear()
            else:
                self._cache.pop(key_id, None)


# Single shared resolver for the app
_resolver: KeyResolver | None = None


def get_key_resolver() -> KeyResolver:
    global _resolver
    if _resolver is None:
        _resolver = KeyResolver(JWKS_URI)
    return _resolver
