"""
Opportunity Score Calculator

Scores a keyword gap (0-100) from three components:

1. Search Volume (40%) - Demand potential, linear up to 100k searches/month
2. Difficulty Inverse (40%) - Rankability
3. Source Gap (20%) - How many competitors already rank, capped at 5

Formula:
    Opportunity_Score = round(
        Volume_Score × 0.40 +
        Difficulty_Inverse × 0.40 +
        Source_Gap × 0.20
    )

Each component is already bounded to 0-100, so the weighted sum is too.
"""

import math
from dataclasses import dataclass


# Volume at which the volume component saturates
MAX_VOLUME = 100000

# Number of ranking sources at which the gap component saturates
MAX_SOURCE_GAP = 5

VOLUME_WEIGHT = 0.4
DIFFICULTY_WEIGHT = 0.4
SOURCE_GAP_WEIGHT = 0.2


@dataclass
class OpportunityBreakdown:
    """Score components (0-100 each) and the final score."""
    volume_score: float
    difficulty_score: float
    source_gap_score: float
    score: int


def normalize_volume(search_volume: int, max_volume: int = MAX_VOLUME) -> float:
    """Linear volume score, 0-100."""
    if search_volume <= 0:
        return 0.0
    return min(search_volume / max_volume * 100, 100)


def invert_difficulty(difficulty: int) -> float:
    """Lower difficulty = higher score."""
    return float(100 - difficulty)


def source_gap_score(source_count: int, max_sources: int = MAX_SOURCE_GAP) -> float:
    """More competitors ranking = stronger signal, 0-100."""
    if source_count <= 0:
        return 0.0
    return min(source_count / max_sources * 100, 100)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (round() would go to even)."""
    return int(math.floor(value + 0.5))


def score_opportunity(search_volume: int, difficulty: int, source_count: int) -> OpportunityBreakdown:
    """
    Calculate the opportunity score with its components.

    Args:
        search_volume: Monthly search volume (>= 0)
        difficulty: Keyword difficulty (0-100)
        source_count: Number of sources ranking for the keyword

    Returns:
        OpportunityBreakdown
    """
    volume = normalize_volume(search_volume)
    ease = invert_difficulty(difficulty)
    gap = source_gap_score(source_count)

    score = round_half_up(
        volume * VOLUME_WEIGHT +
        ease * DIFFICULTY_WEIGHT +
        gap * SOURCE_GAP_WEIGHT
    )
    assert 0 <= score <= 100, f"Opportunity score out of range: {score}"

    return OpportunityBreakdown(
        volume_score=round(volume, 1),
        difficulty_score=round(ease, 1),
        source_gap_score=round(gap, 1),
        score=score,
    )


def calculate_opportunity_score(search_volume: int, difficulty: int, source_count: int) -> int:
    """Opportunity score (0-100) for a keyword the subject does not rank for."""
    return score_opportunity(search_volume, difficulty, source_count).score
