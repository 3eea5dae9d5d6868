"""
Pytest Configuration and Shared Fixtures

Provides common fixtures and configuration for all test modules.
"""

import pytest
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

from searchscout.analysis.models import RankedKeyword, SourceHandle
from searchscout.cache.persistent_cache import PersistentCache
from searchscout.cache.storage import MemoryStorage


DAY_SECONDS = 24 * 60 * 60


# ============================================================================
# Clock and Cache
# ============================================================================

class FakeClock:
    """Manually advanced clock returning seconds, like time.time()."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 0, days: float = 0):
        self.now += seconds + days * DAY_SECONDS


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorage:
    """Roomy in-memory storage."""
    return MemoryStorage(quota_bytes=5 * 1024 * 1024)


@pytest.fixture
def cache(storage, clock) -> PersistentCache:
    """Cache with a 90 day default TTL and a controllable clock."""
    return PersistentCache(
        storage=storage,
        namespace="searchscout_cache_",
        default_expiration_days=90,
        clock=clock,
    )


# ============================================================================
# Keyword Fixtures
# ============================================================================

def make_keyword(
    keyword: str,
    volume: int = 1000,
    difficulty: int = 50,
    position: int = 5,
    cpc: Optional[float] = None,
    etv: Optional[float] = None,
) -> RankedKeyword:
    return RankedKeyword(
        keyword=keyword,
        search_volume=volume,
        difficulty=difficulty,
        position=position,
        cpc=cpc,
        etv=etv,
    )


@pytest.fixture
def subject_keywords() -> List[RankedKeyword]:
    """The subject ranks for a single keyword (scenario A)."""
    return [make_keyword("seo tools", volume=5000, difficulty=40, position=5)]


@pytest.fixture
def fetcher_for():
    """
    Build an AsyncMock fetcher from {source_id: keywords or exception}.
    """
    def _build(responses: Dict[str, Any]) -> AsyncMock:
        async def _fetch(source_id: str):
            value = responses[source_id]
            if isinstance(value, BaseException):
                raise value
            return value

        return AsyncMock(side_effect=_fetch)

    return _build


def sources(*ids: str) -> List[SourceHandle]:
    return [SourceHandle(id=i) for i in ids]


# ============================================================================
# Ranked Keywords API Responses
# ============================================================================

def make_api_item(
    keyword: str = "test keyword",
    volume: int = 1000,
    competition: float = 0.5,
    rank_absolute: int = 3,
    etv: float = 500,
    cpc: float = 1.5,
) -> Dict[str, Any]:
    return {
        "keyword_data": {
            "keyword": keyword,
            "keyword_info": {"search_volume": volume, "competition": competition, "cpc": cpc},
        },
        "ranked_serp_element": {"serp_item": {"rank_absolute": rank_absolute, "etv": etv}},
    }


def make_api_response(items: Optional[List[Dict]] = None, status_code: int = 20000) -> Dict[str, Any]:
    return {
        "status_code": status_code,
        "status_message": "Ok." if status_code == 20000 else "Bad request",
        "tasks": [{"status_code": 20000, "result": [{"items": items or []}]}],
    }

