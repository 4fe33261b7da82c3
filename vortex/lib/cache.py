"""
Result cache with TTL, hit/miss accounting and warm-up.

ResultCache wraps a CacheBackend and is fail-soft: a backend that cannot be
reached degrades to a miss on reads and to a False return on writes, so the
pipeline stays correct (only slower) without a working cache.

Backends:
- MemoryCacheBackend: in-process dict with an injectable clock
- DiskCacheBackend: diskcache on a local directory
- RedisCacheBackend: any Redis server, values stored as JSON
"""

import copy
import json
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import diskcache
import redis

from .chains import normalize_address
from .errors import CacheUnavailable, VortexError

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300  # seconds


def scan_key(address: str) -> str:
    """Cache key for a full scan result."""
    return f"scan:{normalize_address(address)}"


def risk_key(chain: str, address: str) -> str:
    """Cache key for one token's security result."""
    return f"risk:{chain.lower()}:{normalize_address(address)}"


def price_key(chain: str, asset: str) -> str:
    """Cache key for a unit price. Assets are symbols or hex addresses."""
    return f"price:{chain.lower()}:{asset.lower()}"


class CacheBackend(ABC):
    """
    Key-value store with per-entry TTL.

    Implementations raise CacheUnavailable when the backing store fails.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class MemoryCacheBackend(CacheBackend):
    """In-process backend. Values are deep-copied in and out."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def _live_entry(self, key: str) -> Optional[Tuple[Any, float]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._live_entry(key)
            return copy.deepcopy(entry[0]) if entry else None

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            self._entries[key] = (copy.deepcopy(value), self._clock() + ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for key in list(self._entries) if self._live_entry(key))


class DiskCacheBackend(CacheBackend):
    """Local on-disk backend built on diskcache."""

    _ERRORS = (OSError, sqlite3.Error, diskcache.Timeout)

    def __init__(self, directory: str):
        self.directory = directory
        self._cache = diskcache.Cache(directory)

    def get(self, key: str) -> Optional[Any]:
        try:
            return self._cache.get(key, default=None)
        except self._ERRORS as e:
            raise CacheUnavailable(f"Disk cache read failed: {e}") from e

    def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            self._cache.set(key, value, expire=ttl)
        except self._ERRORS as e:
            raise CacheUnavailable(f"Disk cache write failed: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            return bool(self._cache.delete(key))
        except self._ERRORS as e:
            raise CacheUnavailable(f"Disk cache delete failed: {e}") from e

    def exists(self, key: str) -> bool:
        try:
            return key in self._cache
        except self._ERRORS as e:
            raise CacheUnavailable(f"Disk cache lookup failed: {e}") from e

    def clear(self) -> None:
        try:
            self._cache.clear()
        except self._ERRORS as e:
            raise CacheUnavailable(f"Disk cache clear failed: {e}") from e

    def close(self) -> None:
        self._cache.close()


class RedisCacheBackend(CacheBackend):
    """Redis backend. Keys are namespaced with a prefix; values are JSON."""

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        prefix: str = "vortex:",
    ):
        if client is None:
            if not url:
                raise ValueError("Either url or client is required")
            client = redis.Redis.from_url(url, socket_timeout=2.0, socket_connect_timeout=2.0)
        self._client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._client.get(self._key(key))
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis get failed: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise CacheUnavailable(f"Undecodable cache entry for {key}") from e

    def set(self, key: str, value: Any, ttl: int) -> None:
        payload = json.dumps(value)
        try:
            self._client.setex(self._key(key), ttl, payload)
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis set failed: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            return self._client.delete(self._key(key)) > 0
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis delete failed: {e}") from e

    def exists(self, key: str) -> bool:
        try:
            return self._client.exists(self._key(key)) == 1
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis exists failed: {e}") from e

    def clear(self) -> None:
        try:
            keys = list(self._client.scan_iter(match=f"{self.prefix}*"))
            if keys:
                self._client.delete(*keys)
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis clear failed: {e}") from e


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    warmups: int = 0

    @property
    def hit_rate(self) -> float:
        """Hits as a percentage of all lookups (0 when nothing was looked up)."""
        lookups = self.hits + self.misses
        if lookups == 0:
            return 0.0
        return round(self.hits / lookups * 100, 2)


class ResultCache:
    """
    Fail-soft cache facade with hit/miss accounting.

    Every operation swallows CacheUnavailable after logging it: reads become
    misses, writes and deletes report False.
    """

    def __init__(self, backend: CacheBackend, default_ttl: int = DEFAULT_TTL, name: str = "cache"):
        self.backend = backend
        self.default_ttl = default_ttl
        self.name = name
        self._stats = CacheStats()
        self._lock = threading.Lock()

    def _record(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._stats.hits += 1
            else:
                self._stats.misses += 1

    def get(self, key: str) -> Optional[Any]:
        try:
            value = self.backend.get(key)
        except CacheUnavailable as e:
            logger.warning("[%s] get %s degraded to miss: %s", self.name, key, e)
            value = None
        self._record(value is not None)
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            self.backend.set(key, value, ttl if ttl is not None else self.default_ttl)
            return True
        except CacheUnavailable as e:
            logger.warning("[%s] set %s failed: %s", self.name, key, e)
            return False

    def exists(self, key: str) -> bool:
        try:
            return self.backend.exists(key)
        except CacheUnavailable as e:
            logger.warning("[%s] exists %s failed: %s", self.name, key, e)
            return False

    def delete(self, key: str) -> bool:
        try:
            return self.backend.delete(key)
        except CacheUnavailable as e:
            logger.warning("[%s] delete %s failed: %s", self.name, key, e)
            return False

    def clear(self) -> bool:
        try:
            self.backend.clear()
            return True
        except CacheUnavailable as e:
            logger.warning("[%s] clear failed: %s", self.name, e)
            return False

    def get_or_set(self, key: str, factory: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, or compute it with factory and store it."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = factory()
        self.set(key, value, ttl)
        return value

    def warmup(
        self,
        addresses: Iterable[str],
        loader: Callable[[str], Any],
        ttl: Optional[int] = None,
        key_for: Callable[[str], str] = scan_key,
    ) -> int:
        """
        Pre-populate scan entries for addresses that are not cached yet.

        Args:
            addresses: Subject addresses to warm
            loader: Computes the value to cache for one address, without
                touching this cache itself
            ttl: Optional TTL override
            key_for: Builds the cache key for one address

        Returns:
            Number of entries written by this call
        """
        warmed = 0
        for address in addresses:
            key = key_for(address)
            if self.exists(key):
                continue
            try:
                value = loader(address)
            except VortexError as e:
                logger.warning("[%s] warm-up of %s failed: %s", self.name, address, e)
                continue
            if self.set(key, value, ttl):
                warmed += 1
                with self._lock:
                    self._stats.warmups += 1
        return warmed

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                warmups=self._stats.warmups,
            )

    def reset_stats(self) -> None:
        with self._lock:
            self._stats = CacheStats()
