"""
Keyword table sorting.

Each sortable column carries its own typed key, so numeric columns sort
numerically and text columns sort case-insensitively. Keywords without a
value for the column (no CPC, no score) always go last, whatever the
direction.
"""

from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

from searchscout.analysis.models import AggregatedKeyword

# Stand-in position for keywords the subject does not rank for
NOT_RANKING_POSITION = 999


def _subject_position(keyword: AggregatedKeyword) -> int:
    if keyword.subject_ranking is None:
        return NOT_RANKING_POSITION
    return keyword.subject_ranking.position


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class SortColumn(Enum):
    """Sortable columns and the key each one sorts by."""

    KEYWORD = ("keyword", lambda k: k.keyword.casefold())
    SEARCH_VOLUME = ("search_volume", lambda k: k.search_volume)
    DIFFICULTY = ("difficulty", lambda k: k.difficulty)
    CPC = ("cpc", lambda k: k.cpc)
    SUBJECT_POSITION = ("subject_position", _subject_position)
    SOURCE_COUNT = ("source_count", lambda k: k.source_count)
    OPPORTUNITY_SCORE = ("opportunity_score", lambda k: k.opportunity_score)

    def __init__(self, column: str, key: Callable[[AggregatedKeyword], Optional[Union[int, float, str]]]):
        self.column = column
        self.key = key

    @classmethod
    def from_name(cls, name: str) -> "SortColumn":
        """Look a column up by its field name, e.g. "search_volume"."""
        for member in cls:
            if member.column == name:
                return member
        raise ValueError(f"Unknown sort column: {name}")


DEFAULT_SORT_COLUMN = SortColumn.OPPORTUNITY_SCORE
DEFAULT_SORT_DIRECTION = SortDirection.DESC


def sort_keywords(
    keywords: Sequence[AggregatedKeyword],
    column: SortColumn = DEFAULT_SORT_COLUMN,
    direction: SortDirection = DEFAULT_SORT_DIRECTION,
) -> List[AggregatedKeyword]:
    """
    Return a sorted copy of keywords.

    The sort is stable: rows with equal keys keep their current order.
    """
    with_value = [k for k in keywords if column.key(k) is not None]
    without_value = [k for k in keywords if column.key(k) is None]

    with_value.sort(key=column.key, reverse=SortDirection(direction) == SortDirection.DESC)
    return with_value + without_value
