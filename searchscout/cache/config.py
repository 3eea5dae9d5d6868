"""
Cache Configuration

The persisted cache configuration is a single value: how many days an
entry lives. It is stored next to the cache entries (under its own key)
and survives clear_all() and quota eviction.

Allowed values in the UI are 0 (off), 7, 14, 30, 60 and 90 days, but any
non-negative integer is accepted here.
"""

import json
from dataclasses import dataclass
from typing import Dict, Optional

from searchscout.utils.config import get_settings


MILLIS_PER_DAY = 24 * 60 * 60 * 1000

# Fraction of decodable entries removed after a quota failure
EVICTION_FRACTION = 0.25

# Suffix appended to the namespace for the config key
CONFIG_KEY_SUFFIX = "config"

EXPIRATION_CHOICES = (0, 7, 14, 30, 60, 90)


@dataclass(frozen=True)
class CacheConfig:
    """
    Persisted cache configuration.

    expiration_days == 0 disables the cache entirely: nothing is read and
    nothing is written.
    """

    expiration_days: int

    def __post_init__(self):
        if isinstance(self.expiration_days, bool) or not isinstance(self.expiration_days, int):
            raise TypeError("expiration_days must be an integer")
        if self.expiration_days < 0:
            raise ValueError("expiration_days must be >= 0")

    @property
    def enabled(self) -> bool:
        return self.expiration_days > 0

    def to_dict(self) -> Dict:
        return {"expirationDays": self.expiration_days}

    @classmethod
    def from_dict(cls, data: Dict) -> "CacheConfig":
        return cls(expiration_days=data["expirationDays"])

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "CacheConfig":
        return cls.from_dict(json.loads(raw))


def default_cache_config(expiration_days: Optional[int] = None) -> CacheConfig:
    """Built-in config used when nothing has been persisted yet."""
    if expiration_days is None:
        expiration_days = get_settings().CACHE_EXPIRATION_DAYS
    return CacheConfig(expiration_days=expiration_days)
