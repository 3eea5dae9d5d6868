"""
Cache key derivation.

Analysis keys must not depend on the order sources were picked in, and
must change whenever the set of sources changes, so cached analyses are
invalidated when a competitor is added, removed or swapped.
"""

from typing import Iterable


ANALYSIS_KEY_PREFIX = "competitor_analysis"
DOMAIN_KEYWORDS_KEY_PREFIX = "domain_keywords"


def derive_key(subject_domain: str, source_ids: Iterable[str]) -> str:
    """
    Build the cache key for an analysis of subject_domain against source_ids.

    Source ids are de-duplicated and sorted lexicographically before being
    joined, so {A, B} and {B, A} share a key.
    """
    sources = ",".join(sorted(set(source_ids)))
    return f"{ANALYSIS_KEY_PREFIX}_{subject_domain}_{sources}"


def domain_keywords_key(domain: str) -> str:
    """Cache key for the ranked keywords of a single domain."""
    return f"{DOMAIN_KEYWORDS_KEY_PREFIX}_{domain}"
