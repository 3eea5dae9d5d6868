"""
Persistent Cache

Compressed, TTL-expiring key/value cache over a quota-limited string store.

Storage layout (all keys share the namespace prefix):
    <namespace><key>     -> compressed JSON {"key", "data", "timestamp", "expiresAt"}
    <namespace>config    -> plain JSON {"expirationDays": n}

Nothing here raises to the caller. Corrupt, malformed or expired entries
are deleted and reported as a miss; a write that hits the storage quota
evicts the oldest quarter of the entries and is dropped.
"""

import logging
import math
import os
import time
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from searchscout.cache.compression import (
    CacheCompressor,
    CompressionError,
    serialize_value,
    deserialize_value,
)
from searchscout.cache.config import (
    CONFIG_KEY_SUFFIX,
    EVICTION_FRACTION,
    MILLIS_PER_DAY,
    CacheConfig,
    default_cache_config,
)
from searchscout.cache.storage import (
    CacheStorage,
    CorruptItemError,
    FileStorage,
    MemoryStorage,
    QuotaExceededError,
    RedisStorage,
    item_size,
)
from searchscout.utils.config import Settings, get_settings


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class CacheDecodeError(Exception):
    """Stored entry cannot be decompressed, parsed or validated."""


class CacheExpiredError(Exception):
    """Stored entry is past its expiry time."""


@dataclass
class CacheEntry:
    """Cache entry with metadata. Times are epoch milliseconds."""
    key: str
    data: Any
    timestamp: int
    expires_at: int

    def is_expired(self, now_ms: int) -> bool:
        """Check if entry has expired."""
        return self.expires_at < now_ms

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "data": self.data,
            "timestamp": self.timestamp,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "CacheEntry":
        """Create from dictionary."""
        return cls(
            key=data["key"],
            data=data["data"],
            timestamp=int(data["timestamp"]),
            expires_at=int(data["expiresAt"]),
        )


@dataclass
class CacheMetadata:
    """When an entry was written and how old it is in whole days."""
    timestamp: int
    age_in_days: int


@dataclass
class CacheStats:
    """Cache operation statistics."""
    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class PersistentCache:
    """
    TTL cache over an injected CacheStorage.

    Usage:
        cache = PersistentCache(MemoryStorage(quota_bytes=5 * 1024 * 1024))
        cache.save("domain_keywords_example.com", keywords)
        keywords = cache.get("domain_keywords_example.com")

    The storage is not locked; callers are expected to share one instance
    from a single thread (or event loop).
    """

    def __init__(
        self,
        storage: Optional[CacheStorage] = None,
        namespace: Optional[str] = None,
        compressor: Optional[CacheCompressor] = None,
        default_expiration_days: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            storage: Backing store (defaults to an in-memory store)
            namespace: Key prefix (defaults to Settings.CACHE_NAMESPACE)
            compressor: Codec for entry payloads
            default_expiration_days: TTL used when no config is persisted
            clock: Returns the current time in seconds (injectable for tests)
        """
        settings = get_settings()
        self._storage = storage if storage is not None else MemoryStorage(settings.CACHE_QUOTA_BYTES)
        self.namespace = namespace if namespace is not None else settings.CACHE_NAMESPACE
        self._compressor = compressor or CacheCompressor(
            threshold=settings.CACHE_COMPRESSION_THRESHOLD,
        )
        self._default_expiration_days = default_expiration_days
        self._clock = clock
        self._stats = CacheStats()

    @property
    def storage(self) -> CacheStorage:
        return self._storage

    @property
    def config_key(self) -> str:
        return self.namespace + CONFIG_KEY_SUFFIX

    def _storage_key(self, key: str) -> str:
        return self.namespace + key

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _age_in_days(self, timestamp: int) -> int:
        return math.floor((self._now_ms() - timestamp) / MILLIS_PER_DAY)

    def _entry_keys(self) -> List[str]:
        """Namespaced storage keys, excluding the config key."""
        return [
            k for k in self._storage.keys()
            if k.startswith(self.namespace) and k != self.config_key
        ]

    def _get_raw(self, storage_key: str) -> Optional[str]:
        try:
            return self._storage.get_item(storage_key)
        except CorruptItemError as e:
            raise CacheDecodeError(str(e)) from e

    def _decode_entry(self, raw: str) -> CacheEntry:
        try:
            text = self._compressor.decompress(raw)
            return CacheEntry.from_dict(deserialize_value(text))
        except (CompressionError, ValueError, KeyError, TypeError) as e:
            raise CacheDecodeError(str(e)) from e

    # =========================================================================
    # Core Operations
    # =========================================================================

    def save(self, key: str, value: Any, ttl_days: Optional[int] = None) -> bool:
        """
        Store value under key for ttl_days (default: configured expiration).

        Returns True when the entry was written. A TTL of 0 skips the write
        entirely. On a quota failure the oldest entries are evicted and this
        write is dropped, not retried.
        """
        storage_key = self._storage_key(key)
        if storage_key == self.config_key:
            logger.warning(f"Refusing to overwrite cache config with entry {key}")
            return False

        try:
            days = ttl_days if ttl_days is not None else self.get_config().expiration_days

            if days == 0:
                logger.debug(f"Cache is disabled, not saving: {key}")
                return False
            if days < 0:
                raise ValueError(f"Negative TTL: {days}")

            now = self._now_ms()
            entry = CacheEntry(
                key=key,
                data=value,
                timestamp=now,
                expires_at=now + days * MILLIS_PER_DAY,
            )
            encoded, _ = self._compressor.compress(serialize_value(entry.to_dict()))
            self._storage.set_item(storage_key, encoded)

        except QuotaExceededError as e:
            self._stats.errors += 1
            logger.warning(f"Cache quota exceeded saving {key}, evicting oldest entries: {e}")
            self._handle_quota_exceeded()
            return False
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Failed to cache {key}: {e}")
            return False

        self._stats.writes += 1
        logger.debug(f"Cached {key}, expires in {days} days")
        return True

    def get(self, key: str, model: Optional[Type[M]] = None) -> Optional[Any]:
        """
        Get a value if present, decodable and not expired.

        If model is given the payload is validated into that pydantic
        model; a payload that fails validation is treated like a corrupt
        entry. Bad entries are removed so the next call is a clean miss.
        """
        try:
            if not self.get_config().enabled:
                logger.debug(f"Cache is disabled, not retrieving: {key}")
                return None

            try:
                raw = self._get_raw(self._storage_key(key))
                if raw is None:
                    self._stats.misses += 1
                    logger.debug(f"Cache miss: {key}")
                    return None

                entry = self._decode_entry(raw)
                if entry.is_expired(self._now_ms()):
                    raise CacheExpiredError(f"Entry {key} expired at {entry.expires_at}")
                data = entry.data
                if model is not None:
                    try:
                        data = model.model_validate(data)
                    except ValidationError as e:
                        raise CacheDecodeError(f"Malformed payload: {e}") from e
            except CacheExpiredError:
                logger.debug(f"Cache expired: {key}")
                self.remove(key)
                self._stats.misses += 1
                return None
            except CacheDecodeError as e:
                logger.warning(f"Unreadable cache entry {key}, evicting: {e}")
                self.remove(key)
                self._stats.misses += 1
                return None

            self._stats.hits += 1
            logger.debug(f"Cache hit: {key} (age: {self._age_in_days(entry.timestamp)} days)")
            return data

        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache get error for {key}: {e}")
            return None

    def remove(self, key: str) -> None:
        """Remove an entry. Missing keys are ignored."""
        storage_key = self._storage_key(key)
        if storage_key == self.config_key:
            return
        try:
            self._storage.remove_item(storage_key)
            logger.debug(f"Removed from cache: {key}")
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache remove error for {key}: {e}")

    def metadata(self, key: str) -> Optional[CacheMetadata]:
        """
        Timestamp and age of a stored entry.

        Expiry is not enforced here: an expired but readable entry still
        reports its metadata and is left in place.
        """
        try:
            raw = self._storage.get_item(self._storage_key(key))
            if raw is None:
                return None
            entry = self._decode_entry(raw)
        except Exception:
            return None

        return CacheMetadata(
            timestamp=entry.timestamp,
            age_in_days=self._age_in_days(entry.timestamp),
        )

    def clear_all(self) -> int:
        """Delete every cache entry except the config. Returns count removed."""
        removed = 0
        try:
            for storage_key in self._entry_keys():
                self._storage.remove_item(storage_key)
                removed += 1
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache clear error: {e}")

        logger.info(f"Cleared {removed} cache entries")
        return removed

    # =========================================================================
    # Configuration
    # =========================================================================

    def get_config(self) -> CacheConfig:
        """Persisted config, or the built-in default when absent or unreadable."""
        try:
            raw = self._storage.get_item(self.config_key)
            if raw:
                return CacheConfig.from_json(raw)
        except Exception as e:
            logger.warning(f"Unreadable cache config, using default: {e}")

        return default_cache_config(self._default_expiration_days)

    def set_config(self, config: CacheConfig) -> bool:
        """Persist the config. Returns False if it could not be stored."""
        try:
            self._storage.set_item(self.config_key, config.to_json())
        except QuotaExceededError as e:
            self._stats.errors += 1
            logger.warning(f"Cache quota exceeded saving config: {e}")
            self._handle_quota_exceeded()
            return False
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Failed to save cache config: {e}")
            return False

        logger.debug(f"Cache config updated: {config}")
        return True

    # =========================================================================
    # Size and Eviction
    # =========================================================================

    def size_bytes(self) -> int:
        """Total key + value bytes of everything under the namespace."""
        size = 0
        try:
            for storage_key in self._storage.keys():
                if not storage_key.startswith(self.namespace):
                    continue
                try:
                    value = self._get_raw(storage_key)
                except CacheDecodeError:
                    continue
                if value:
                    size += item_size(storage_key, value)
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache size error: {e}")
        return size

    def size_mb(self) -> float:
        return self.size_bytes() / (1024 * 1024)

    def _handle_quota_exceeded(self) -> int:
        """
        Remove the oldest 25% (rounded up) of decodable entries.

        Entries that cannot be decoded are left alone and do not count
        towards the total. Returns the number of entries removed.
        """
        try:
            entries = []
            for storage_key in self._entry_keys():
                try:
                    raw = self._get_raw(storage_key)
                    if raw is None:
                        continue
                    entry = self._decode_entry(raw)
                except CacheDecodeError:
                    continue
                entries.append((entry.timestamp, storage_key))

            # Sort by timestamp (oldest first)
            entries.sort(key=lambda e: e[0])

            to_remove = math.ceil(len(entries) * EVICTION_FRACTION)
            for _, storage_key in entries[:to_remove]:
                self._storage.remove_item(storage_key)

        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache eviction failed: {e}")
            return 0

        self._stats.evictions += to_remove
        logger.warning(f"Removed oldest {to_remove} of {len(entries)} cache entries")
        return to_remove

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> Dict:
        """Get cache statistics."""
        return {
            "enabled": self.get_config().enabled,
            "expiration_days": self.get_config().expiration_days,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "writes": self._stats.writes,
            "evictions": self._stats.evictions,
            "errors": self._stats.errors,
            "hit_rate_percent": round(self._stats.hit_rate * 100, 2),
            "size_mb": round(self.size_mb(), 3),
        }


def create_persistent_cache(settings: Optional[Settings] = None) -> PersistentCache:
    """Build a cache over the backend named by Settings.CACHE_BACKEND."""
    settings = settings or get_settings()
    backend = settings.CACHE_BACKEND.lower()

    if backend == "memory":
        storage = MemoryStorage(quota_bytes=settings.CACHE_QUOTA_BYTES)
    elif backend == "file":
        path = settings.CACHE_PATH or os.getenv(
            "SEARCHSCOUT_CACHE_PATH",
            str(Path.home() / ".searchscout" / "cache"),
        )
        storage = FileStorage(path, quota_bytes=settings.CACHE_QUOTA_BYTES)
    elif backend == "redis":
        storage = RedisStorage.from_url(settings.REDIS_URL, prefix=settings.CACHE_NAMESPACE)
    else:
        raise ValueError(f"Unknown cache backend: {settings.CACHE_BACKEND}")

    logger.info(f"Persistent cache using {backend} storage")
    return PersistentCache(
        storage=storage,
        namespace=settings.CACHE_NAMESPACE,
        compressor=CacheCompressor(threshold=settings.CACHE_COMPRESSION_THRESHOLD),
        default_expiration_days=settings.CACHE_EXPIRATION_DAYS,
    )


@lru_cache(maxsize=1)
def get_persistent_cache() -> PersistentCache:
    """Get singleton cache built from the environment settings."""
    return create_persistent_cache()
