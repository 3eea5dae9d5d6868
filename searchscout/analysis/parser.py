"""
Ranked Keywords Response Parser

Turns a DataForSEO ranked_keywords/live response into RankedKeyword
records. Every item is parsed on its own: an item that cannot be parsed
becomes a KeywordParseError in the outcome instead of being dropped, so
callers can report what was skipped.

Expected item shape:
    {
        "keyword_data": {
            "keyword": "seo tool",
            "keyword_info": {"search_volume": 2000, "competition": 0.6, "cpc": 2.5}
        },
        "ranked_serp_element": {"serp_item": {"rank_absolute": 5, "etv": 300}}
    }
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from searchscout.analysis.models import RankedKeyword

logger = logging.getLogger(__name__)


STATUS_OK = 20000

# Task-level codes that carry data (20100 = task created)
TASK_STATUS_OK = (20000, 20100)


@dataclass
class KeywordParseError:
    """An item of the response that could not be turned into a keyword."""
    index: int
    reason: str


@dataclass
class ParseOutcome:
    """Parsed records plus the items that failed, in response order."""
    records: List[RankedKeyword] = field(default_factory=list)
    errors: List[KeywordParseError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


def extract_items(response: Dict[str, Any]) -> List[Any]:
    """
    Safely get tasks[0].result[0].items.

    Missing tasks, a null result or null items all mean "no keywords".
    """
    tasks = response.get("tasks")
    if not tasks or not isinstance(tasks, list):
        return []

    task = tasks[0] or {}
    result = task.get("result") if isinstance(task, dict) else None
    if not result or not isinstance(result, list):
        return []

    first_result = result[0]
    if not first_result or not isinstance(first_result, dict):
        return []

    items = first_result.get("items")
    return items if items and isinstance(items, list) else []


def competition_to_difficulty(competition: Optional[float]) -> int:
    """Competition (0.0-1.0) to a 0-100 difficulty."""
    if competition is None:
        return 0
    return max(0, min(100, round(float(competition) * 100)))


def parse_item(item: Dict[str, Any]) -> RankedKeyword:
    """
    Parse a single response item.

    Raises:
        ValueError: Missing or invalid fields (includes pydantic errors)
    """
    if not isinstance(item, dict):
        raise ValueError(f"Item is {type(item).__name__}, not an object")

    kw_data = item.get("keyword_data")
    if not isinstance(kw_data, dict):
        raise ValueError("Missing keyword_data")

    keyword = kw_data.get("keyword")
    if not keyword:
        raise ValueError("Missing keyword")

    kw_info = kw_data.get("keyword_info") or {}
    serp_item = (item.get("ranked_serp_element") or {}).get("serp_item") or {}

    position = serp_item.get("rank_absolute")
    if position is None:
        raise ValueError(f"Missing rank_absolute for {keyword!r}")

    return RankedKeyword(
        keyword=keyword,
        search_volume=kw_info.get("search_volume") or 0,
        difficulty=competition_to_difficulty(kw_info.get("competition")),
        cpc=kw_info.get("cpc"),
        position=position,
        etv=serp_item.get("etv"),
    )


def parse_ranked_keywords(response: Dict[str, Any], source_id: str = "") -> ParseOutcome:
    """
    Parse a ranked keywords response.

    The caller is expected to have checked the top-level status code.

    Args:
        response: Raw API response dict
        source_id: Used in log messages only

    Returns:
        ParseOutcome with records and per-item errors
    """
    outcome = ParseOutcome()

    for index, item in enumerate(extract_items(response)):
        try:
            outcome.records.append(parse_item(item))
        except (ValueError, TypeError, AttributeError) as e:
            # pydantic's ValidationError is a ValueError
            reason = _short_reason(e)
            outcome.errors.append(KeywordParseError(index=index, reason=reason))

    if outcome.errors:
        logger.warning(
            f"Skipped {len(outcome.errors)} unparseable keyword items"
            f"{f' from {source_id}' if source_id else ''}: {outcome.errors[0].reason}"
        )

    return outcome


def _short_reason(error: Exception) -> str:
    if isinstance(error, ValidationError):
        first = error.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", ()))
        return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    return str(error)
