"""JWKS retrieval and caching.

Provides:
- KeySetFetcher: GETs a JWKS document and turns each entry's leaf x5c
  certificate into a public key, keyed by kid
- KeySetCache: TTL cache over a fetcher, one entry per JWKS endpoint, with
  single-flight refresh
- KeySource: Protocol the token verifier resolves keys through
"""

import base64
import binascii
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm

from tokengate.auth.errors import FetchError, MalformedKeySetError
from tokengate.logging import get_logger

logger = get_logger(__name__)

# Mapping of key identifier (kid) to a cryptography public key object
KeyMap = dict[str, Any]

DEFAULT_FETCH_TIMEOUT_S = 5.0
DEFAULT_CACHE_TTL_S = 3600
DEFAULT_MIN_REFRESH_INTERVAL_S = 30


class KeySource(Protocol):
    """Protocol for resolving the key set published at a JWKS endpoint."""

    def get_keys(self, endpoint_url: str) -> KeyMap:
        """Return the current key set, fetching it if needed."""
        ...

    def refresh(self, endpoint_url: str) -> KeyMap:
        """Return a key set at least as new as the one seen before the call."""
        ...


def load_certificate_key(encoded_cert: str, kid: str) -> Any:
    """Decode a base64 DER certificate and return its public key.

    x5c entries use standard base64 (not base64url), per RFC 7517 section 4.7.
    Line breaks and other whitespace inside the value are ignored.

    Raises:
        MalformedKeySetError: The entry is not valid base64 or not a certificate.
    """
    try:
        der = base64.b64decode("".join(encoded_cert.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedKeySetError(f"x5c certificate for kid {kid!r} is not valid base64") from e

    try:
        certificate = x509.load_der_x509_certificate(der)
        return certificate.public_key()
    except (ValueError, UnsupportedAlgorithm) as e:
        raise MalformedKeySetError(f"x5c certificate for kid {kid!r} could not be parsed") from e


def parse_key_set(document: Any) -> KeyMap:
    """Build a kid -> public key mapping from a decoded JWKS document.

    An empty `keys` array yields an empty mapping.

    Raises:
        MalformedKeySetError: The document or one of its entries lacks the
            expected structure.
    """
    if not isinstance(document, dict):
        raise MalformedKeySetError("JWKS document must be a JSON object")

    entries = document.get("keys")
    if not isinstance(entries, list):
        raise MalformedKeySetError("JWKS document has no 'keys' array")

    key_map: KeyMap = {}
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise MalformedKeySetError(f"JWKS entry {index} is not an object")

        kid = entry.get("kid")
        if not isinstance(kid, str) or not kid:
            raise MalformedKeySetError(f"JWKS entry {index} has no kid")

        chain = entry.get("x5c")
        if not isinstance(chain, list) or not chain or not isinstance(chain[0], str):
            raise MalformedKeySetError(f"JWKS entry {kid!r} has no x5c certificate chain")

        # Only the leaf certificate carries the signing key
        key_map[kid] = load_certificate_key(chain[0], kid)

    return key_map


class KeySetFetcher:
    """Fetches a JWKS document over HTTP and prepares its keys.

    One outbound request per fetch() call, bounded by the configured timeout.
    No retries; callers decide whether to try again.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_FETCH_TIMEOUT_S,
        client: httpx.Client | None = None,
    ):
        """Initialize the fetcher.

        Args:
            timeout: Seconds allowed for connect, read and write on the request.
            client: Optional shared httpx.Client. One is created (and owned) if omitted.
        """
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout))

    def fetch(self, endpoint_url: str) -> KeyMap:
        """Fetch the JWKS at endpoint_url and return its kid -> public key mapping.

        Raises:
            FetchError: Transport failure, timeout, or non-2xx response.
            MalformedKeySetError: Body is not a well-formed JWKS document.
        """
        document = self._get_document(endpoint_url)
        return parse_key_set(document)

    def _get_document(self, endpoint_url: str) -> Any:
        try:
            response = self._client.get(
                endpoint_url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise FetchError(f"timed out fetching JWKS from {endpoint_url}") from e
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"JWKS endpoint {endpoint_url} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"failed to fetch JWKS from {endpoint_url}: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise MalformedKeySetError(f"JWKS body from {endpoint_url} is not valid JSON") from e

    def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            self._client.close()


@dataclass
class _CacheEntry:
    keys: KeyMap
    fetched_at: float


class KeySetCache:
    """TTL cache of key sets, one entry per JWKS endpoint.

    Thread safety:
    - A fresh entry is returned without taking any lock
    - Fetches are serialized by a per-endpoint lock; threads that waited on
      the lock re-check the entry, so at most one fetch is in flight per
      endpoint
    - A failed fetch propagates and leaves the previous entry in place
    """

    def __init__(
        self,
        fetcher: KeySetFetcher,
        ttl_seconds: float = DEFAULT_CACHE_TTL_S,
        min_refresh_interval: float = DEFAULT_MIN_REFRESH_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            fetcher: Performs the actual JWKS fetch.
            ttl_seconds: Age after which an entry is refetched. 0 disables caching.
            min_refresh_interval: Minimum entry age before a forced refresh refetches.
            clock: Monotonic time source (injectable for tests).
        """
        self.fetcher = fetcher
        self.ttl_seconds = ttl_seconds
        self.min_refresh_interval = min_refresh_interval
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def get_keys(self, endpoint_url: str) -> KeyMap:
        """Return the cached key set, fetching it when missing or expired."""
        entry = self._entries.get(endpoint_url)
        if entry is not None and self._is_fresh(entry):
            return entry.keys

        with self._lock_for(endpoint_url):
            entry = self._entries.get(endpoint_url)
            if entry is not None and self._is_fresh(entry):
                return entry.keys
            return self._fetch_and_store(endpoint_url)

    def refresh(self, endpoint_url: str) -> KeyMap:
        """Force a refetch, used when a token names an unknown kid.

        Rate limited: an entry younger than min_refresh_interval is returned
        as is, and callers that queued behind an in-flight refresh share its
        result.
        """
        seen = self._entries.get(endpoint_url)

        with self._lock_for(endpoint_url):
            entry = self._entries.get(endpoint_url)
            if entry is not None and entry is not seen:
                return entry.keys
            if entry is not None and self._age(entry) < self.min_refresh_interval:
                return entry.keys
            return self._fetch_and_store(endpoint_url)

    def invalidate(self, endpoint_url: str | None = None) -> None:
        """Drop one cached entry, or all of them."""
        if endpoint_url is None:
            self._entries.clear()
        else:
            self._entries.pop(endpoint_url, None)

    def close(self) -> None:
        """Release the underlying fetcher."""
        self.fetcher.close()

    def _fetch_and_store(self, endpoint_url: str) -> KeyMap:
        keys = self.fetcher.fetch(endpoint_url)
        self._entries[endpoint_url] = _CacheEntry(keys=keys, fetched_at=self._clock())
        logger.info("jwks_refreshed", endpoint=endpoint_url, key_count=len(keys))
        return keys

    def _lock_for(self, endpoint_url: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(endpoint_url)
            if lock is None:
                lock = self._locks[endpoint_url] = threading.Lock()
            return lock

    def _age(self, entry: _CacheEntry) -> float:
        return self._clock() - entry.fetched_at

    def _is_fresh(self, entry: _CacheEntry) -> bool:
        return self._age(entry) < self.ttl_seconds
