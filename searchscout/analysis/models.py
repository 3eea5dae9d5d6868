"""
Keyword Analysis Models

Validated shapes shared by the sources, the aggregator and the cache.
Analysis results are stored in the cache as JSON and validated back into
these models on read, so a payload that breaks an invariant is rejected
like any other corrupt entry.
"""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# KEYWORD RECORDS
# ============================================================================

class KeywordRecord(BaseModel):
    """General search metrics for a keyword, not tied to any domain."""
    model_config = ConfigDict(frozen=True)

    keyword: str = Field(..., min_length=1)
    search_volume: int = Field(0, ge=0)
    difficulty: int = Field(0, ge=0, le=100)
    cpc: Optional[float] = None


class RankedKeyword(KeywordRecord):
    """A domain's ranking for a keyword (1 = top result)."""
    position: int = Field(..., ge=1)
    etv: Optional[float] = None  # Estimated monthly traffic value


# ============================================================================
# AGGREGATION
# ============================================================================

class SubjectRanking(BaseModel):
    """Where the analysed domain itself ranks."""
    position: int = Field(..., ge=1)
    etv: Optional[float] = None


class SourceRanking(BaseModel):
    """Where one source (competitor) ranks for a keyword."""
    source_id: str
    position: int = Field(..., ge=1)
    etv: Optional[float] = None


class AggregatedKeyword(BaseModel):
    """One keyword merged across the subject and every source."""
    keyword: str
    search_volume: int = Field(..., ge=0)
    difficulty: int = Field(..., ge=0, le=100)
    cpc: Optional[float] = None
    subject_ranking: Optional[SubjectRanking] = None
    source_rankings: List[SourceRanking] = []
    source_count: int = Field(0, ge=0)
    is_opportunity: bool = False
    opportunity_score: Optional[int] = Field(None, ge=0, le=100)

    @model_validator(mode="after")
    def _check_classification(self) -> "AggregatedKeyword":
        if self.source_count != len(self.source_rankings):
            raise ValueError("source_count must equal the number of source rankings")
        expected = self.subject_ranking is None and self.source_count > 0
        if self.is_opportunity != expected:
            raise ValueError("is_opportunity does not match rankings")
        if (self.opportunity_score is not None) != self.is_opportunity:
            raise ValueError("opportunity_score must be set exactly for opportunities")
        return self

    @property
    def is_shared(self) -> bool:
        return self.subject_ranking is not None and self.source_count > 0

    @property
    def is_unique_to_subject(self) -> bool:
        return self.subject_ranking is not None and self.source_count == 0


class ViewMode(str, Enum):
    """Which partition of an analysis to look at."""
    OPPORTUNITIES = "opportunities"
    ALL = "all"
    SHARED = "shared"
    UNIQUE = "unique"


class SourceDiagnostic(BaseModel):
    """Something that went wrong with a source without failing the analysis."""
    source_id: str
    kind: Literal["fetch_failed", "timeout", "parse_error"]
    message: str
    item_index: Optional[int] = None


class AnalysisResult(BaseModel):
    """
    Classified, scored keyword gap analysis.

    all_keywords partitions exactly into opportunities, shared and
    unique_to_subject. Opportunities are ordered by score, best first.
    """
    all_keywords: List[AggregatedKeyword]
    opportunities: List[AggregatedKeyword]
    shared: List[AggregatedKeyword]
    unique_to_subject: List[AggregatedKeyword]
    total_keywords: int
    analyzed_sources: List[str]
    timestamp: int  # Epoch milliseconds
    diagnostics: List[SourceDiagnostic] = []

    @model_validator(mode="after")
    def _check_partitions(self) -> "AnalysisResult":
        if self.total_keywords != len(self.all_keywords):
            raise ValueError("total_keywords must equal len(all_keywords)")
        parts = len(self.opportunities) + len(self.shared) + len(self.unique_to_subject)
        if parts != len(self.all_keywords):
            raise ValueError("partitions do not cover all_keywords exactly")
        if not all(k.is_opportunity for k in self.opportunities):
            raise ValueError("opportunities contains a non-opportunity")
        if not all(k.is_shared for k in self.shared):
            raise ValueError("shared contains a non-shared keyword")
        if not all(k.is_unique_to_subject for k in self.unique_to_subject):
            raise ValueError("unique_to_subject contains a keyword a source ranks for")
        return self

    def view(self, mode: ViewMode) -> List[AggregatedKeyword]:
        """Keywords of the requested partition."""
        mode = ViewMode(mode)
        if mode == ViewMode.OPPORTUNITIES:
            return self.opportunities
        if mode == ViewMode.SHARED:
            return self.shared
        if mode == ViewMode.UNIQUE:
            return self.unique_to_subject
        return self.all_keywords


# ============================================================================
# SOURCES
# ============================================================================

class SourceHandle(BaseModel):
    """
    A keyword source picked for analysis, usually a competitor domain.

    Only id takes part in the analysis; the metrics come from competitor
    discovery and are carried along for display.
    """
    id: str = Field(..., min_length=1)
    keyword_overlap: int = 0
    total_keywords: int = 0
    etv: Optional[float] = None
    average_position: Optional[float] = None
    is_manual: bool = False
