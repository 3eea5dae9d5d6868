"""
Keyword Aggregator

Builds a keyword gap analysis for a subject domain against any number of
keyword sources (usually competitor domains).

Execution strategy:
- Cached analysis for the same subject and source set is returned as-is
- Otherwise every source is fetched in parallel; a source that fails or
  times out contributes no keywords (the analysis still completes)
- Keywords are merged case-insensitively, subject first, then sources in
  the order they were supplied (not the order their fetches finished)
- Opportunities (sources rank, subject does not) are scored and sorted
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from searchscout.analysis.models import (
    AggregatedKeyword,
    AnalysisResult,
    RankedKeyword,
    SourceDiagnostic,
    SourceHandle,
    SourceRanking,
    SubjectRanking,
)
from searchscout.analysis.parser import ParseOutcome
from searchscout.analysis.scoring import calculate_opportunity_score
from searchscout.analysis.sources import KeywordFetcher
from searchscout.cache.keys import derive_key
from searchscout.cache.persistent_cache import CacheMetadata, PersistentCache
from searchscout.utils.domain import clean_domain, is_valid_domain

logger = logging.getLogger(__name__)


@dataclass
class SourceKeywords:
    """What one source contributed to the merge."""
    source_id: str
    keywords: List[RankedKeyword] = field(default_factory=list)
    diagnostics: List[SourceDiagnostic] = field(default_factory=list)


@dataclass
class _MergedKeyword:
    """Mutable accumulator used while merging."""
    record: RankedKeyword
    subject_ranking: Optional[SubjectRanking]
    source_rankings: List[SourceRanking] = field(default_factory=list)


class KeywordAggregator:
    """
    Orchestrates source fetches, merge, classification and scoring.

    Usage:
        aggregator = KeywordAggregator(cache, fetcher)
        result = await aggregator.analyze("example.com", my_keywords, competitors)
        for kw in result.opportunities[:10]:
            print(kw.keyword, kw.opportunity_score)
    """

    def __init__(
        self,
        cache: PersistentCache,
        fetch_keywords: KeywordFetcher,
        fetch_timeout: Optional[float] = None,
    ):
        """
        Args:
            cache: Where finished analyses are stored
            fetch_keywords: Async callable source_id -> ranked keywords
            fetch_timeout: Default per-source deadline in seconds (None = no deadline)
        """
        self.cache = cache
        self.fetch_keywords = fetch_keywords
        self.fetch_timeout = fetch_timeout

    # =========================================================================
    # Analysis
    # =========================================================================

    async def analyze(
        self,
        subject_domain: str,
        subject_keywords: Sequence[RankedKeyword],
        sources: Sequence[SourceHandle],
        timeout: Optional[float] = None,
    ) -> AnalysisResult:
        """
        Analyse subject_domain's keywords against sources.

        Args:
            subject_domain: The analysed domain
            subject_keywords: Keywords the subject ranks for (already fetched)
            sources: Sources to compare against; may be empty. Ids are
                normalized and repeated sources are analysed once.
            timeout: Per-source fetch deadline in seconds, overrides fetch_timeout

        Returns:
            AnalysisResult (cached or freshly built)
        """
        source_ids = unique_source_ids(sources)
        key = derive_key(subject_domain, source_ids)

        cached = self.cache.get(key, model=AnalysisResult)
        if cached is not None:
            logger.info(f"Using cached analysis for {subject_domain}")
            return cached

        logger.info(f"Analyzing {subject_domain} against {len(source_ids)} sources: {source_ids}")

        deadline = timeout if timeout is not None else self.fetch_timeout
        contributions = await asyncio.gather(
            *[self._fetch_source(source_id, deadline) for source_id in source_ids]
        )

        result = self.aggregate(subject_keywords, contributions)

        self.cache.save(key, result)
        return result

    async def _fetch_source(self, source_id: str, timeout: Optional[float]) -> SourceKeywords:
        """Fetch one source, turning any failure into an empty contribution."""
        try:
            if timeout is not None:
                fetched = await asyncio.wait_for(self.fetch_keywords(source_id), timeout)
            else:
                fetched = await self.fetch_keywords(source_id)
        except asyncio.TimeoutError:
            logger.warning(f"Keyword fetch for {source_id} timed out after {timeout}s")
            return SourceKeywords(
                source_id=source_id,
                diagnostics=[SourceDiagnostic(
                    source_id=source_id,
                    kind="timeout",
                    message=f"Timed out after {timeout}s",
                )],
            )
        except Exception as e:
            logger.error(f"Error fetching keywords for {source_id}: {e}")
            return SourceKeywords(
                source_id=source_id,
                diagnostics=[SourceDiagnostic(
                    source_id=source_id,
                    kind="fetch_failed",
                    message=str(e) or type(e).__name__,
                )],
            )

        if isinstance(fetched, ParseOutcome):
            return SourceKeywords(
                source_id=source_id,
                keywords=list(fetched.records),
                diagnostics=[
                    SourceDiagnostic(
                        source_id=source_id,
                        kind="parse_error",
                        message=error.reason,
                        item_index=error.index,
                    )
                    for error in fetched.errors
                ],
            )

        return SourceKeywords(source_id=source_id, keywords=list(fetched or []))

    def aggregate(
        self,
        subject_keywords: Iterable[RankedKeyword],
        contributions: Sequence[SourceKeywords],
    ) -> AnalysisResult:
        """
        Merge, classify and score. Pure: does not touch the cache.

        contributions must be in the order the sources were supplied.
        """
        merged = self._merge(subject_keywords, contributions)

        all_keywords = [self._finalize(entry) for entry in merged.values()]

        # sorted() is stable: equal scores keep insertion order
        opportunities = sorted(
            (k for k in all_keywords if k.is_opportunity),
            key=lambda k: k.opportunity_score,
            reverse=True,
        )
        shared = [k for k in all_keywords if k.is_shared]
        unique_to_subject = [k for k in all_keywords if k.is_unique_to_subject]

        logger.info(
            f"Aggregation complete: {len(all_keywords)} total, "
            f"{len(opportunities)} opportunities, {len(shared)} shared, "
            f"{len(unique_to_subject)} unique"
        )

        return AnalysisResult(
            all_keywords=all_keywords,
            opportunities=opportunities,
            shared=shared,
            unique_to_subject=unique_to_subject,
            total_keywords=len(all_keywords),
            analyzed_sources=[c.source_id for c in contributions],
            timestamp=int(time.time() * 1000),
            diagnostics=[d for c in contributions for d in c.diagnostics],
        )

    @staticmethod
    def _merge(
        subject_keywords: Iterable[RankedKeyword],
        contributions: Sequence[SourceKeywords],
    ) -> Dict[str, _MergedKeyword]:
        merged: Dict[str, _MergedKeyword] = {}

        for keyword in subject_keywords:
            key = normalize_keyword(keyword.keyword)
            if key in merged:
                continue
            merged[key] = _MergedKeyword(
                record=keyword,
                subject_ranking=SubjectRanking(position=keyword.position, etv=keyword.etv),
            )

        for contribution in contributions:
            for keyword in contribution.keywords:
                ranking = SourceRanking(
                    source_id=contribution.source_id,
                    position=keyword.position,
                    etv=keyword.etv,
                )
                key = normalize_keyword(keyword.keyword)
                existing = merged.get(key)
                if existing is not None:
                    existing.source_rankings.append(ranking)
                else:
                    merged[key] = _MergedKeyword(
                        record=keyword,
                        subject_ranking=None,
                        source_rankings=[ranking],
                    )

        return merged

    @staticmethod
    def _finalize(entry: _MergedKeyword) -> AggregatedKeyword:
        record = entry.record
        source_count = len(entry.source_rankings)
        is_opportunity = entry.subject_ranking is None and source_count > 0

        score = None
        if is_opportunity:
            score = calculate_opportunity_score(record.search_volume, record.difficulty, source_count)

        return AggregatedKeyword(
            keyword=record.keyword,
            search_volume=record.search_volume,
            difficulty=record.difficulty,
            cpc=record.cpc,
            subject_ranking=entry.subject_ranking,
            source_rankings=entry.source_rankings,
            source_count=source_count,
            is_opportunity=is_opportunity,
            opportunity_score=score,
        )

    # =========================================================================
    # Cache helpers
    # =========================================================================

    @staticmethod
    def cache_key(subject_domain: str, sources: Iterable[SourceHandle]) -> str:
        return derive_key(subject_domain, unique_source_ids(sources))

    def cache_metadata(
        self,
        subject_domain: str,
        sources: Iterable[SourceHandle],
    ) -> Optional[CacheMetadata]:
        """Age of the cached analysis for this subject and source set."""
        return self.cache.metadata(self.cache_key(subject_domain, sources))

    def clear_cache(self, subject_domain: str, sources: Iterable[SourceHandle]) -> None:
        """Drop the cached analysis so the next analyze() refetches."""
        self.cache.remove(self.cache_key(subject_domain, sources))


def normalize_keyword(keyword: str) -> str:
    """Case-insensitive merge key for a keyword."""
    return keyword.lower()


def normalize_source_id(source_id: str) -> str:
    """
    Canonical id for a source.

    Domains are cleaned like RankedKeywordsFetcher cleans them
    ("https://www.Rival.com/" -> "rival.com"); other ids are only stripped.
    """
    cleaned = clean_domain(source_id)
    return cleaned if is_valid_domain(cleaned) else source_id.strip()


def unique_source_ids(sources: Iterable[SourceHandle]) -> List[str]:
    """Normalized source ids without repeats, in first-seen order."""
    ids: List[str] = []
    for source in sources:
        source_id = normalize_source_id(source.id)
        if source_id not in ids:
            ids.append(source_id)
    return ids

