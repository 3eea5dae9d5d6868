"""
Cache Storage Backends

The persistent cache talks to a byte-budgeted string key/value store
through the CacheStorage port. Backends:

- MemoryStorage: in-process dict, used by tests and as the default
- FileStorage: one file per key on local disk
- RedisStorage: shared Redis instance (maxmemory acts as the quota)

Every backend raises QuotaExceededError when a write does not fit, and
CorruptItemError from get_item() when a stored value cannot be read back
as text.
"""

import errno
import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from redis import Redis
from redis.exceptions import ResponseError


logger = logging.getLogger(__name__)


class QuotaExceededError(Exception):
    """Raised when a write would exceed the storage byte budget."""

    def __init__(self, message: str, requested_bytes: int = 0, quota_bytes: Optional[int] = None):
        super().__init__(message)
        self.requested_bytes = requested_bytes
        self.quota_bytes = quota_bytes


class CorruptItemError(Exception):
    """Raised when a stored item exists but is not valid UTF-8 text."""

    def __init__(self, message: str, key: str = None):
        super().__init__(message)
        self.key = key


def item_size(key: str, value: str) -> int:
    """Bytes an item occupies: UTF-8 length of key plus value."""
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class CacheStorage(ABC):
    """Storage port used by PersistentCache."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the stored value or None. Raises CorruptItemError if unreadable."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store a value. Raises QuotaExceededError when it does not fit."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Delete a key. Missing keys are ignored."""

    @abstractmethod
    def keys(self) -> List[str]:
        """All keys currently stored."""


class MemoryStorage(CacheStorage):
    """
    In-memory storage with a hard byte quota.

    Replacing an existing key only counts the difference in size.
    """

    def __init__(self, quota_bytes: Optional[int] = 5 * 1024 * 1024):
        self.quota_bytes = quota_bytes
        self._items: Dict[str, str] = {}
        self._used = 0

    @property
    def used_bytes(self) -> int:
        return self._used

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        new_size = item_size(key, value)
        old_size = item_size(key, self._items[key]) if key in self._items else 0

        if self.quota_bytes is not None and self._used - old_size + new_size > self.quota_bytes:
            raise QuotaExceededError(
                f"Storage quota exceeded writing {key}",
                requested_bytes=new_size,
                quota_bytes=self.quota_bytes,
            )

        self._items[key] = value
        self._used += new_size - old_size

    def remove_item(self, key: str) -> None:
        value = self._items.pop(key, None)
        if value is not None:
            self._used -= item_size(key, value)

    def keys(self) -> List[str]:
        return list(self._items.keys())

    def clear(self) -> None:
        self._items.clear()
        self._used = 0


class FileStorage(CacheStorage):
    """
    File-backed storage.

    Each item lives in <path>/<hash[:2]>/<hash>.cache where the first line
    is the key and the rest is the value. The quota covers the item sizes
    (key + value bytes), not filesystem overhead.
    """

    SUFFIX = ".cache"

    def __init__(self, path: str, quota_bytes: Optional[int] = 5 * 1024 * 1024):
        self.path = Path(path)
        self.path.mkdir(parents=True, exist_ok=True)
        self.quota_bytes = quota_bytes
        logger.info(f"FileStorage initialized at {self.path} (quota={quota_bytes})")

    def _file_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        # Use first 2 chars for subdirectory to avoid too many files in one dir
        return self.path / digest[:2] / f"{digest}{self.SUFFIX}"

    def _files(self) -> List[Path]:
        return [f for f in self.path.glob(f"*/*{self.SUFFIX}") if f.is_file()]

    @staticmethod
    def _split(data: bytes):
        key, _, value = data.partition(b"\n")
        return key, value

    def used_bytes(self) -> int:
        total = 0
        for file in self._files():
            try:
                # Key + newline + value, so the item size is one byte less
                total += max(file.stat().st_size - 1, 0)
            except OSError:
                continue
        return total

    def get_item(self, key: str) -> Optional[str]:
        file = self._file_for(key)
        if not file.exists():
            return None
        stored_key, value = self._split(file.read_bytes())
        try:
            if stored_key.decode("utf-8") != key:
                return None
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptItemError(f"Cache file for {key} is not valid UTF-8: {e}", key=key) from e

    def set_item(self, key: str, value: str) -> None:
        if "\n" in key:
            raise ValueError("Cache keys cannot contain newlines")

        file = self._file_for(key)
        new_size = item_size(key, value)

        if self.quota_bytes is not None:
            old_size = max(file.stat().st_size - 1, 0) if file.exists() else 0
            if self.used_bytes() - old_size + new_size > self.quota_bytes:
                raise QuotaExceededError(
                    f"Storage quota exceeded writing {key}",
                    requested_bytes=new_size,
                    quota_bytes=self.quota_bytes,
                )

        try:
            file.parent.mkdir(parents=True, exist_ok=True)
            file.write_bytes(f"{key}\n{value}".encode("utf-8"))
        except OSError as e:
            if e.errno in (errno.ENOSPC, errno.EDQUOT):
                raise QuotaExceededError(
                    f"Disk full writing {key}",
                    requested_bytes=new_size,
                    quota_bytes=self.quota_bytes,
                ) from e
            raise

    def remove_item(self, key: str) -> None:
        file = self._file_for(key)
        if file.exists():
            file.unlink()

    def keys(self) -> List[str]:
        """
        Keys of all readable files.

        A file whose key line is not valid UTF-8 cannot be addressed by any
        key, so it is deleted instead of listed.
        """
        keys = []
        for file in self._files():
            try:
                key, _ = self._split(file.read_bytes())
                keys.append(key.decode("utf-8"))
            except UnicodeDecodeError:
                logger.warning(f"Deleting cache file with an unreadable key: {file}")
                file.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Unreadable cache file {file}: {e}")
        return keys


class RedisStorage(CacheStorage):
    """
    Redis-backed storage using a synchronous client.

    Redis enforces the quota through maxmemory: with a noeviction policy a
    full instance answers writes with an OOM error, which is reported as
    QuotaExceededError. keys() is limited to the given prefix so a shared
    instance is not scanned in full.
    """

    def __init__(self, client: Redis, prefix: str = ""):
        self._redis = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "") -> "RedisStorage":
        return cls(Redis.from_url(url, decode_responses=True), prefix=prefix)

    @staticmethod
    def _text(value) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def get_item(self, key: str) -> Optional[str]:
        try:
            return self._text(self._redis.get(key))
        except UnicodeDecodeError as e:
            raise CorruptItemError(f"Redis value for {key} is not valid UTF-8: {e}", key=key) from e

    def set_item(self, key: str, value: str) -> None:
        try:
            self._redis.set(key, value)
        except ResponseError as e:
            if str(e).startswith("OOM"):
                raise QuotaExceededError(
                    f"Redis out of memory writing {key}",
                    requested_bytes=item_size(key, value),
                ) from e
            raise

    def remove_item(self, key: str) -> None:
        self._redis.delete(key)

    def keys(self) -> List[str]:
        return [self._text(k) for k in self._redis.scan_iter(match=f"{self.prefix}*", count=100)]
