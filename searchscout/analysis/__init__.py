"""
Keyword Gap Analysis

Merges the subject domain's ranked keywords with those of its competitors
and classifies every keyword:

- Opportunity: at least one source ranks, the subject does not (scored 0-100)
- Shared: the subject and at least one source rank
- Unique to subject: only the subject ranks

Example Usage:
    from searchscout.analysis import KeywordAggregator, RankedKeywordsFetcher, SourceHandle
    from searchscout.cache import create_persistent_cache

    cache = create_persistent_cache()
    aggregator = KeywordAggregator(cache, RankedKeywordsFetcher(client.post, cache))

    result = await aggregator.analyze(
        "example.com",
        subject_keywords,
        [SourceHandle(id="rival.com"), SourceHandle(id="other.com")],
    )
    print(f"{len(result.opportunities)} gaps, best: {result.opportunities[0].keyword}")
"""

from .models import (
    KeywordRecord,
    RankedKeyword,
    SubjectRanking,
    SourceRanking,
    AggregatedKeyword,
    AnalysisResult,
    SourceDiagnostic,
    SourceHandle,
    ViewMode,
)
from .scoring import (
    OpportunityBreakdown,
    calculate_opportunity_score,
    score_opportunity,
)
from .parser import (
    KeywordParseError,
    ParseOutcome,
    parse_ranked_keywords,
)
from .sources import (
    KeywordFetcher,
    RankedKeywordsFetcher,
    SourceFetchError,
)
from .aggregator import (
    KeywordAggregator,
    SourceKeywords,
    normalize_keyword,
    normalize_source_id,
    unique_source_ids,
)
from .sorting import SortColumn, SortDirection, sort_keywords

__all__ = [
    # Models
    "KeywordRecord",
    "RankedKeyword",
    "SubjectRanking",
    "SourceRanking",
    "AggregatedKeyword",
    "AnalysisResult",
    "SourceDiagnostic",
    "SourceHandle",
    "ViewMode",
    # Scoring
    "OpportunityBreakdown",
    "calculate_opportunity_score",
    "score_opportunity",
    # Parsing
    "KeywordParseError",
    "ParseOutcome",
    "parse_ranked_keywords",
    # Sources
    "KeywordFetcher",
    "RankedKeywordsFetcher",
    "SourceFetchError",
    # Aggregation
    "KeywordAggregator",
    "SourceKeywords",
    "normalize_keyword",
    "normalize_source_id",
    "unique_source_ids",
    # Sorting
    "SortColumn",
    "SortDirection",
    "sort_keywords",
]
