"""
Tests for the keyword aggregator.

Covers classification (opportunity / shared / unique), merge order,
fail-open source fetching, per-source deadlines, parse diagnostics and
caching of finished analyses.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from searchscout.analysis.aggregator import (
    KeywordAggregator,
    SourceKeywords,
    normalize_keyword,
    normalize_source_id,
    unique_source_ids,
)
from searchscout.analysis.sources import RankedKeywordsFetcher
from searchscout.analysis.models import AnalysisResult, ViewMode
from searchscout.analysis.parser import KeywordParseError, ParseOutcome
from searchscout.cache.config import CacheConfig

from tests.conftest import make_keyword, sources


def keywords_of(items):
    return [k.keyword for k in items]


# =============================================================================
# CLASSIFICATION
# =============================================================================

class TestClassification:
    """Merge and classify subject and source keywords."""

    @pytest.mark.asyncio
    async def test_opportunity_and_unique(self, cache, fetcher_for, subject_keywords):
        """A source-only keyword is an opportunity; a subject-only keyword is unique."""
        fetch = fetcher_for({"rival.com": [make_keyword("keyword research", 3000, 30, position=3)]})
        aggregator = KeywordAggregator(cache, fetch)

        result = await aggregator.analyze("example.com", subject_keywords, sources("rival.com"))

        assert len(result.all_keywords) == 2
        assert result.total_keywords == 2
        assert keywords_of(result.opportunities) == ["keyword research"]
        assert keywords_of(result.unique_to_subject) == ["seo tools"]
        assert result.shared == []

        gap = result.opportunities[0]
        assert gap.is_opportunity
        assert gap.subject_ranking is None
        assert gap.source_count == 1
        assert gap.source_rankings[0].source_id == "rival.com"
        assert gap.source_rankings[0].position == 3
        assert gap.opportunity_score == 33

    @pytest.mark.asyncio
    async def test_shared_keyword(self, cache, fetcher_for, subject_keywords):
        """A keyword both sides rank for is shared only."""
        fetch = fetcher_for({"rival.com": [make_keyword("seo tools", 5000, 40, position=3)]})
        aggregator = KeywordAggregator(cache, fetch)

        result = await aggregator.analyze("example.com", subject_keywords, sources("rival.com"))

        assert keywords_of(result.shared) == ["seo tools"]
        assert result.opportunities == []
        assert result.unique_to_subject == []

        shared = result.shared[0]
        assert shared.subject_ranking.position == 5
        assert shared.source_rankings[0].position == 3
        assert shared.opportunity_score is None
        assert not shared.is_opportunity

    @pytest.mark.asyncio
    async def test_merge_is_case_insensitive(self, cache, fetcher_for):
        """Keywords differing only in case merge; the subject's spelling wins."""
        subject = [make_keyword("SEO Tools", position=2)]
        fetch = fetcher_for({"rival.com": [make_keyword("seo tools", position=1)]})
        aggregator = KeywordAggregator(cache, fetch)

        result = await aggregator.analyze("example.com", subject, sources("rival.com"))

        assert result.total_keywords == 1
        assert keywords_of(result.shared) == ["SEO Tools"]

    @pytest.mark.asyncio
    async def test_first_subject_duplicate_wins(self, cache, fetcher_for):
        """Duplicate subject keywords keep the first occurrence."""
        subject = [
            make_keyword("seo tools", volume=100, position=2),
            make_keyword("Seo Tools", volume=999, position=9),
        ]
        aggregator = KeywordAggregator(cache, fetcher_for({}))

        result = await aggregator.analyze("example.com", subject, [])

        assert result.total_keywords == 1
        assert result.all_keywords[0].search_volume == 100
        assert result.all_keywords[0].subject_ranking.position == 2

    @pytest.mark.asyncio
    async def test_multiple_sources_count(self, cache, fetcher_for, subject_keywords):
        """Every source ranking is recorded and counted."""
        fetch = fetcher_for({
            "a.com": [make_keyword("backlink checker", 10000, 20, position=4)],
            "b.com": [make_keyword("Backlink Checker", 10000, 20, position=7)],
        })
        aggregator = KeywordAggregator(cache, fetch)

        result = await aggregator.analyze("example.com", subject_keywords, sources("a.com", "b.com"))

        gap = result.opportunities[0]
        assert gap.keyword == "backlink checker"
        assert gap.source_count == 2
        assert [r.source_id for r in gap.source_rankings] == ["a.com", "b.com"]
        # 10 * 0.4 + 80 * 0.4 + 40 * 0.2 = 44
        assert gap.opportunity_score == 44

    @pytest.mark.asyncio
    async def test_source_order_not_completion_order(self, cache):
        """Merge follows the order sources were given, not fetch completion."""
        async def fetch(source_id):
            if source_id == "slow.com":
                await asyncio.sleep(0.05)
            return [make_keyword("rank tracker", position=1 if source_id == "slow.com" else 2)]

        aggregator = KeywordAggregator(cache, fetch)
        result = await aggregator.analyze("example.com", [], sources("slow.com", "fast.com"))

        rankings = result.opportunities[0].source_rankings
        assert [r.source_id for r in rankings] == ["slow.com", "fast.com"]
        assert result.analyzed_sources == ["slow.com", "fast.com"]

    @pytest.mark.asyncio
    async def test_opportunities_sorted_stably(self, cache, fetcher_for):
        """Opportunities are best first; ties keep insertion order."""
        fetch = fetcher_for({"rival.com": [
            make_keyword("tie one", 1000, 50),
            make_keyword("best", 90000, 5),
            make_keyword("tie two", 1000, 50),
            make_keyword("worst", 0, 100),
        ]})
        aggregator = KeywordAggregator(cache, fetch)

        result = await aggregator.analyze("example.com", [], sources("rival.com"))

        assert keywords_of(result.opportunities) == ["best", "tie one", "tie two", "worst"]
        assert keywords_of(result.all_keywords) == ["tie one", "best", "tie two", "worst"]

    @pytest.mark.asyncio
    async def test_partitions_cover_all_keywords(self, cache, fetcher_for):
        """Every keyword lands in exactly one partition."""
        subject = [make_keyword(f"subject {i}") for i in range(5)] + [make_keyword("common")]
        fetch = fetcher_for({
            "a.com": [make_keyword(f"gap {i}", volume=i * 1000) for i in range(4)] + [make_keyword("COMMON")],
            "b.com": [make_keyword("gap 1"), make_keyword("other gap")],
        })
        aggregator = KeywordAggregator(cache, fetch)

        result = await aggregator.analyze("example.com", subject, sources("a.com", "b.com"))

        parts = [keywords_of(result.opportunities), keywords_of(result.shared), keywords_of(result.unique_to_subject)]
        flat = [k for part in parts for k in part]
        assert sorted(flat) == sorted(keywords_of(result.all_keywords))
        assert len(flat) == len(set(flat)) == result.total_keywords == 11
        assert keywords_of(result.shared) == ["common"]
        for kw in result.opportunities:
            assert 0 <= kw.opportunity_score <= 100

    @pytest.mark.asyncio
    async def test_no_sources(self, cache, fetcher_for, subject_keywords):
        """With no sources everything is unique to the subject."""
        fetch = fetcher_for({})
        aggregator = KeywordAggregator(cache, fetch)

        result = await aggregator.analyze("example.com", subject_keywords, [])

        assert keywords_of(result.unique_to_subject) == ["seo tools"]
        assert result.opportunities == []
        assert result.analyzed_sources == []
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_view_modes(self, cache, fetcher_for, subject_keywords):
        """view() returns the chosen partition."""
        fetch = fetcher_for({"rival.com": [make_keyword("keyword research", 3000, 30)]})
        result = await KeywordAggregator(cache, fetch).analyze(
            "example.com", subject_keywords, sources("rival.com")
        )

        assert result.view(ViewMode.OPPORTUNITIES) == result.opportunities
        assert result.view(ViewMode.UNIQUE) == result.unique_to_subject
        assert result.view("shared") == result.shared
        assert result.view(ViewMode.ALL) == result.all_keywords

    def test_aggregate_is_pure(self, cache, fetcher_for, subject_keywords):
        """aggregate() builds a result without touching the cache."""
        aggregator = KeywordAggregator(cache, fetcher_for({}))
        contribution = SourceKeywords(source_id="rival.com", keywords=[make_keyword("gap")])

        result = aggregator.aggregate(subject_keywords, [contribution])

        assert keywords_of(result.opportunities) == ["gap"]
        assert cache.size_bytes() == 0

    @pytest.mark.asyncio
    async def test_repeated_source_is_fetched_once(self, cache, fetcher_for):
        """A source listed twice counts once."""
        fetch = fetcher_for({"a.com": [make_keyword("tie one", 1000, 50)]})
        aggregator = KeywordAggregator(cache, fetch)

        result = await aggregator.analyze("example.com", [], sources("a.com", "a.com"))

        gap = result.opportunities[0]
        assert gap.source_count == 1
        assert [r.source_id for r in gap.source_rankings] == ["a.com"]
        assert gap.opportunity_score == 24
        assert result.analyzed_sources == ["a.com"]
        assert fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_repeated_source_shares_cache_with_single(self, cache, fetcher_for):
        """Listing a source twice hits the same cached analysis as listing it once."""
        fetch = fetcher_for({"a.com": [make_keyword("tie one", 1000, 50)]})
        aggregator = KeywordAggregator(cache, fetch)

        first = await aggregator.analyze("example.com", [], sources("a.com", "a.com"))
        second = await aggregator.analyze("example.com", [], sources("a.com"))

        assert second == first
        assert fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_source_ids_are_normalized(self, cache, fetcher_for):
        """Rankings and analyzed_sources use the cleaned domain."""
        fetch = fetcher_for({"rival.com": [make_keyword("rank tracker")]})
        aggregator = KeywordAggregator(cache, fetch)

        result = await aggregator.analyze(
            "example.com", [], sources("Rival.com", "https://www.rival.com/blog")
        )

        assert result.analyzed_sources == ["rival.com"]
        assert result.opportunities[0].source_rankings[0].source_id == "rival.com"
        fetch.assert_awaited_once_with("rival.com")

    @pytest.mark.asyncio
    async def test_failed_task_becomes_fetch_diagnostic(self, cache, subject_keywords):
        """A source whose API task failed contributes nothing and is reported."""
        post = AsyncMock(return_value={
            "status_code": 20000,
            "tasks": [{"status_code": 40501, "status_message": "Invalid Field", "result": None}],
        })
        aggregator = KeywordAggregator(cache, RankedKeywordsFetcher(post, cache))

        result = await aggregator.analyze("example.com", subject_keywords, sources("rival.com"))

        assert keywords_of(result.unique_to_subject) == ["seo tools"]
        assert [(d.source_id, d.kind) for d in result.diagnostics] == [("rival.com", "fetch_failed")]
        assert cache.get("domain_keywords_rival.com") is None

    def test_normalize_source_id(self):
        """Domains are cleaned; other ids are only stripped."""
        assert normalize_source_id("https://www.Rival.com/") == "rival.com"
        assert normalize_source_id(" manual-list ") == "manual-list"
        assert unique_source_ids(sources("b.com", "A.com", "a.com", "b.com")) == ["b.com", "a.com"]

    def test_normalize_keyword(self):
        """Merge key ignores case."""
        assert normalize_keyword("SEO Tools") == normalize_keyword("seo tools")


# =============================================================================
# FAIL-OPEN FETCHING
# =============================================================================

class TestSourceFailures:
    """Source failures never fail the analysis."""

    @pytest.mark.asyncio
    async def test_failing_source_contributes_nothing(self, cache, fetcher_for, subject_keywords):
        """One source raising still yields a result."""
        fetch = fetcher_for({
            "ok.com": [make_keyword("keyword research", 3000, 30)],
            "broken.com": RuntimeError("API down"),
        })
        aggregator = KeywordAggregator(cache, fetch)

        result = await aggregator.analyze("example.com", subject_keywords, sources("ok.com", "broken.com"))

        assert "seo tools" in keywords_of(result.all_keywords)
        assert keywords_of(result.opportunities) == ["keyword research"]
        assert all(r.source_id != "broken.com" for k in result.all_keywords for r in k.source_rankings)
        assert result.analyzed_sources == ["ok.com", "broken.com"]

        assert len(result.diagnostics) == 1
        diagnostic = result.diagnostics[0]
        assert diagnostic.source_id == "broken.com"
        assert diagnostic.kind == "fetch_failed"
        assert "API down" in diagnostic.message

    @pytest.mark.asyncio
    async def test_all_sources_failing(self, cache, fetcher_for, subject_keywords):
        """Only the subject's keywords remain when every source fails."""
        fetch = fetcher_for({"a.com": ValueError("bad"), "b.com": ConnectionError("refused")})
        aggregator = KeywordAggregator(cache, fetch)

        result = await aggregator.analyze("example.com", subject_keywords, sources("a.com", "b.com"))

        assert keywords_of(result.unique_to_subject) == ["seo tools"]
        assert [d.source_id for d in result.diagnostics] == ["a.com", "b.com"]

    @pytest.mark.asyncio
    async def test_slow_source_times_out(self, cache, subject_keywords):
        """A source past its deadline is dropped with a timeout diagnostic."""
        async def fetch(source_id):
            if source_id == "slow.com":
                await asyncio.sleep(5)
            return [make_keyword(f"{source_id} keyword")]

        aggregator = KeywordAggregator(cache, fetch)
        result = await aggregator.analyze(
            "example.com", subject_keywords, sources("fast.com", "slow.com"), timeout=0.05
        )

        assert keywords_of(result.opportunities) == ["fast.com keyword"]
        assert [(d.source_id, d.kind) for d in result.diagnostics] == [("slow.com", "timeout")]

    @pytest.mark.asyncio
    async def test_default_timeout_from_constructor(self, cache, subject_keywords):
        """fetch_timeout applies when analyze() has no timeout."""
        async def fetch(source_id):
            await asyncio.sleep(5)
            return []

        aggregator = KeywordAggregator(cache, fetch, fetch_timeout=0.05)
        result = await aggregator.analyze("example.com", subject_keywords, sources("slow.com"))

        assert result.diagnostics[0].kind == "timeout"

    @pytest.mark.asyncio
    async def test_parse_errors_become_diagnostics(self, cache, fetcher_for, subject_keywords):
        """Parsed records are merged and skipped items are reported."""
        outcome = ParseOutcome(
            records=[make_keyword("keyword research", 3000, 30)],
            errors=[KeywordParseError(index=2, reason="Missing keyword")],
        )
        aggregator = KeywordAggregator(cache, fetcher_for({"rival.com": outcome}))

        result = await aggregator.analyze("example.com", subject_keywords, sources("rival.com"))

        assert keywords_of(result.opportunities) == ["keyword research"]
        diagnostic = result.diagnostics[0]
        assert diagnostic.kind == "parse_error"
        assert diagnostic.item_index == 2
        assert diagnostic.message == "Missing keyword"


# =============================================================================
# CACHING
# =============================================================================

class TestAnalysisCaching:
    """Finished analyses are cached per subject and source set."""

    @pytest.mark.asyncio
    async def test_second_call_uses_cache(self, cache, fetcher_for, subject_keywords):
        """Repeating an analysis does not refetch sources."""
        fetch = fetcher_for({
            "a.com": [make_keyword("keyword research", 3000, 30)],
            "b.com": [make_keyword("rank tracker", 2000, 20)],
        })
        aggregator = KeywordAggregator(cache, fetch)

        first = await aggregator.analyze("example.com", subject_keywords, sources("a.com", "b.com"))
        second = await aggregator.analyze("example.com", subject_keywords, sources("a.com", "b.com"))

        assert fetch.await_count == 2
        assert isinstance(second, AnalysisResult)
        assert second == first

    @pytest.mark.asyncio
    async def test_source_order_shares_cache(self, cache, fetcher_for, subject_keywords):
        """Reordered sources hit the same cached analysis."""
        fetch = fetcher_for({"a.com": [], "b.com": []})
        aggregator = KeywordAggregator(cache, fetch)

        await aggregator.analyze("example.com", subject_keywords, sources("a.com", "b.com"))
        await aggregator.analyze("example.com", subject_keywords, sources("b.com", "a.com"))

        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_different_sources_refetch(self, cache, fetcher_for, subject_keywords):
        """Changing the source set is a cache miss."""
        fetch = fetcher_for({"a.com": [], "b.com": []})
        aggregator = KeywordAggregator(cache, fetch)

        await aggregator.analyze("example.com", subject_keywords, sources("a.com"))
        await aggregator.analyze("example.com", subject_keywords, sources("a.com", "b.com"))

        assert fetch.await_count == 3

    @pytest.mark.asyncio
    async def test_malformed_cached_analysis_is_rebuilt(self, cache, storage, fetcher_for, subject_keywords):
        """A cached payload that is not an analysis is evicted and rebuilt."""
        fetch = fetcher_for({"a.com": [make_keyword("keyword research", 3000, 30)]})
        aggregator = KeywordAggregator(cache, fetch)
        key = KeywordAggregator.cache_key("example.com", sources("a.com"))
        cache.save(key, {"opportunities": "not a list"})

        result = await aggregator.analyze("example.com", subject_keywords, sources("a.com"))

        assert keywords_of(result.opportunities) == ["keyword research"]
        assert fetch.await_count == 1
        assert cache.get(key, model=AnalysisResult) == result

    @pytest.mark.asyncio
    async def test_disabled_cache_always_fetches(self, cache, fetcher_for, subject_keywords):
        """With caching off every analysis refetches."""
        cache.set_config(CacheConfig(expiration_days=0))
        fetch = fetcher_for({"a.com": []})
        aggregator = KeywordAggregator(cache, fetch)

        await aggregator.analyze("example.com", subject_keywords, sources("a.com"))
        await aggregator.analyze("example.com", subject_keywords, sources("a.com"))

        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_metadata_and_clear(self, cache, clock, fetcher_for, subject_keywords):
        """Cached analyses report their age and can be dropped."""
        fetch = fetcher_for({"a.com": []})
        aggregator = KeywordAggregator(cache, fetch)

        assert aggregator.cache_metadata("example.com", sources("a.com")) is None

        await aggregator.analyze("example.com", subject_keywords, sources("a.com"))
        clock.advance(days=2)

        assert aggregator.cache_metadata("example.com", sources("a.com")).age_in_days == 2

        aggregator.clear_cache("example.com", sources("a.com"))
        assert aggregator.cache_metadata("example.com", sources("a.com")) is None

        await aggregator.analyze("example.com", subject_keywords, sources("a.com"))
        assert fetch.await_count == 2

    def test_cache_key(self):
        """Keys follow competitor_analysis_<domain>_<sorted ids>."""
        key = KeywordAggregator.cache_key("example.com", sources("b.com", "a.com"))
        assert key == "competitor_analysis_example.com_a.com,b.com"
