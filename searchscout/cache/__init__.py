"""
SearchScout Caching Layer

Local, quota-limited cache for keyword lists and finished analyses:
- PersistentCache: compressed, TTL-expiring entries with quota eviction
- CacheStorage: storage port (memory, file and Redis backends)
- derive_key: order-independent analysis cache keys

Usage:
    cache = create_persistent_cache()
    cache.save(derive_key("example.com", ["rival.com"]), result)
    result = cache.get(key, model=AnalysisResult)

    # Turn caching off (nothing is read or written)
    cache.set_config(CacheConfig(expiration_days=0))
"""

from searchscout.cache.config import CacheConfig, EXPIRATION_CHOICES, default_cache_config
from searchscout.cache.compression import (
    CacheCompressor,
    CompressionError,
    serialize_value,
    deserialize_value,
)
from searchscout.cache.storage import (
    CacheStorage,
    MemoryStorage,
    FileStorage,
    RedisStorage,
    QuotaExceededError,
    CorruptItemError,
)
from searchscout.cache.persistent_cache import (
    PersistentCache,
    CacheEntry,
    CacheMetadata,
    CacheDecodeError,
    CacheExpiredError,
    create_persistent_cache,
    get_persistent_cache,
)
from searchscout.cache.keys import derive_key, domain_keywords_key

__all__ = [
    # Config
    "CacheConfig",
    "EXPIRATION_CHOICES",
    "default_cache_config",
    # Compression
    "CacheCompressor",
    "CompressionError",
    "serialize_value",
    "deserialize_value",
    # Storage
    "CacheStorage",
    "MemoryStorage",
    "FileStorage",
    "RedisStorage",
    "QuotaExceededError",
    "CorruptItemError",
    # Cache
    "PersistentCache",
    "CacheEntry",
    "CacheMetadata",
    "CacheDecodeError",
    "CacheExpiredError",
    "create_persistent_cache",
    "get_persistent_cache",
    # Keys
    "derive_key",
    "domain_keywords_key",
]
